"""
Strategy contract and the leaf strategies that need no network access.

A strategy is one self-contained way to find (or provide) a tool on a node.
Every strategy is an immutable dataclass exposing applies(node) and
resolve(node, context); resolve() returns the tool home on the node or
raises a ResolutionError.

Strategies are built from configuration with strategy_from_dict(), which
dispatches on the "type" key.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping

from .common import has_unresolved_variables, sanitize_tool_name, substitute_variables
from .credentials import CredentialLookup
from .errors import ConfigurationError, FilesystemError, NotFound, ResolutionError, WrongVersion
from .nodes import Node
from .versions import VersionConstraint

logger = logging.getLogger(__name__)

DEFAULT_FAIL_MESSAGE = "No installation method is configured for this node"

# type key -> strategy class, filled by @register
STRATEGY_TYPES: dict[str, type[Strategy]] = {}


@dataclass(frozen=True)
class ResolutionContext:
    """
    What a strategy needs besides the node.

    Attributes:
        tool_name: Display name of the tool being resolved
        credentials: Lookup for download credentials, or None
        global_environment: Variables used when the node does not define them
        log: Sink for user-visible progress lines, or None for silence
        timeout: Network timeout in seconds
    """
    tool_name: str
    credentials: CredentialLookup | None = None
    global_environment: Mapping[str, str] = field(default_factory=dict)
    log: logging.Logger | None = None
    timeout: float | None = 30.0

    def emit(self, msg: str, level: int = logging.INFO) -> None:
        """Write a user-visible line to the sink, or to the debug log when there is none."""
        if self.log is None:
            logger.debug(msg)
        else:
            self.log.log(level, msg)


def preferred_location(node: Node, tool_name: str) -> str:
    """Directory on the node where a tool would be installed by default."""
    return os.path.join(node.tools_root, sanitize_tool_name(tool_name))


def substitute_node_variables(
    text: str | None,
    node: Node,
    context: ResolutionContext,
    what: str,
    fail_on_substitution: bool,
) -> str | None:
    """
    Expand ``${VAR}`` from the node environment, then the global environment.

    Raises:
        ConfigurationError: If fail_on_substitution is set and references remain
    """
    result = substitute_variables(text, node.environment(), context.global_environment)
    if fail_on_substitution and has_unresolved_variables(result):
        raise ConfigurationError(
            f"Can't resolve all variables in {what} string. Final state: {result}"
        )
    return result


def register(type_name: str) -> Callable[[type[Strategy]], type[Strategy]]:
    """Class decorator adding a strategy class to the type registry."""
    def decorator(cls: type[Strategy]) -> type[Strategy]:
        cls.type_name = type_name
        STRATEGY_TYPES[type_name] = cls
        return cls
    return decorator


@dataclass(frozen=True)
class Strategy(ABC):
    """
    Base class for all strategies.

    Attributes:
        label: Node label this strategy is restricted to, or None for all nodes
    """
    label: str | None = None

    type_name: ClassVar[str] = ""
    display_name: ClassVar[str] = ""

    def applies(self, node: Node) -> bool:
        """True if this strategy may be used on the node."""
        return self.label is None or self.label in node.labels

    @abstractmethod
    def resolve(self, node: Node, context: ResolutionContext) -> str:
        """
        Find or provide the tool on the node.

        Returns:
            Tool home path on the node

        Raises:
            ResolutionError: If the tool could not be resolved this way
        """

    @abstractmethod
    def _fields_to_dict(self) -> dict[str, Any]:
        ...

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {"type": self.type_name}
        if self.label is not None:
            data["label"] = self.label
        data.update(self._fields_to_dict())
        return data


def _relative_home(executable: str, relative_path: str | None) -> str:
    parent = os.path.dirname(executable)
    if not relative_path or relative_path == ".":
        return parent
    return os.path.join(parent, relative_path)


def check_version(
    node: Node,
    executable: str,
    tool_home: str,
    constraint: VersionConstraint,
) -> None:
    """
    Run the version command in the tool home and check the result.

    Only stdout is parsed; the exit code of the version command is ignored.

    Raises:
        WrongVersion: If the parsed version is outside the constraint's bounds
    """
    if not constraint.is_active:
        return
    result = node.run(constraint.command, cwd=tool_home)
    parsed, in_range = constraint.evaluate(result.stdout)
    logger.debug(f"Version of {executable}: {parsed!r} (range check: {in_range})")
    if in_range != 0:
        raise WrongVersion(executable, tool_home, parsed, constraint.min, constraint.max)


@register("search_path")
@dataclass(frozen=True)
class SearchPath(Strategy):
    """
    Find an executable on the node's PATH.

    Attributes:
        executable_name: File name to look for in each PATH directory
        relative_path: Tool home relative to the executable's directory
        version: Optional version requirement
    """
    executable_name: str = ""
    relative_path: str | None = None
    version: VersionConstraint = field(default_factory=VersionConstraint)

    display_name: ClassVar[str] = "Search PATH"

    def find_executable(self, node: Node) -> str:
        if not self.executable_name:
            raise ConfigurationError("Executable name is not set")
        path_value = node.getenv("PATH") or ""
        separator = ";" if node.is_windows() else ":"
        for directory in path_value.split(separator):
            if not directory:
                continue
            candidate = os.path.join(directory, self.executable_name)
            if node.is_executable_file(candidate):
                return candidate
        raise NotFound(
            f"Executable '{self.executable_name}' not found on PATH, {path_value}",
            executable=self.executable_name,
            searched=path_value,
        )

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        executable = self.find_executable(node)
        tool_home = _relative_home(executable, self.relative_path)
        check_version(node, executable, tool_home, self.version)
        return tool_home

    def _fields_to_dict(self) -> dict[str, Any]:
        return {
            "executable_name": self.executable_name,
            "relative_path": self.relative_path,
            "version": self.version.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SearchPath:
        """Create SearchPath from dictionary."""
        return SearchPath(
            label=data.get("label") or None,
            executable_name=data.get("executable_name") or "",
            relative_path=data.get("relative_path") or None,
            version=VersionConstraint.from_dict(data.get("version") or {}),
        )


@register("search_fixed_directory")
@dataclass(frozen=True)
class SearchFixedDirectory(Strategy):
    """
    Check for an executable at a fixed path on the node.

    Attributes:
        executable_path: Full path of the executable (``${VAR}`` references allowed)
        relative_path: Tool home relative to the executable's directory
        version: Optional version requirement
    """
    executable_path: str = ""
    relative_path: str | None = None
    version: VersionConstraint = field(default_factory=VersionConstraint)

    display_name: ClassVar[str] = "Search fixed directory"

    def find_executable(self, node: Node, context: ResolutionContext) -> str:
        if not self.executable_path:
            raise ConfigurationError("Executable path is not set")
        executable = substitute_node_variables(
            self.executable_path, node, context, "Executable Path", fail_on_substitution=False,
        )
        if node.is_executable_file(executable):
            return executable
        raise NotFound(f"Executable '{executable}' not found.", executable=executable, searched=executable)

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        executable = self.find_executable(node, context)
        tool_home = _relative_home(executable, self.relative_path)
        check_version(node, executable, tool_home, self.version)
        return tool_home

    def _fields_to_dict(self) -> dict[str, Any]:
        return {
            "executable_path": self.executable_path,
            "relative_path": self.relative_path,
            "version": self.version.to_dict(),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> SearchFixedDirectory:
        """Create SearchFixedDirectory from dictionary."""
        return SearchFixedDirectory(
            label=data.get("label") or None,
            executable_path=data.get("executable_path") or "",
            relative_path=data.get("relative_path") or None,
            version=VersionConstraint.from_dict(data.get("version") or {}),
        )


@register("already_in_shared_location")
@dataclass(frozen=True)
class AlreadyInSharedLocation(Strategy):
    """
    The tool is already installed in a known location; just point at it.

    Attributes:
        tool_home: Tool home, absolute or relative to the preferred location
        fail_on_substitution: Fail if ``${VAR}`` references cannot be resolved
    """
    tool_home: str = ""
    fail_on_substitution: bool = False

    display_name: ClassVar[str] = "Already in shared location"

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        if not self.tool_home:
            raise ConfigurationError("Tool home is not set")
        home = substitute_node_variables(
            self.tool_home, node, context, "Tool Home", self.fail_on_substitution,
        )
        return os.path.join(preferred_location(node, context.tool_name), home)

    def _fields_to_dict(self) -> dict[str, Any]:
        return {"tool_home": self.tool_home, "fail_on_substitution": self.fail_on_substitution}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> AlreadyInSharedLocation:
        """Create AlreadyInSharedLocation from dictionary."""
        return AlreadyInSharedLocation(
            label=data.get("label") or None,
            tool_home=data.get("tool_home") or "",
            fail_on_substitution=bool(data.get("fail_on_substitution", False)),
        )


@register("fail")
@dataclass(frozen=True)
class Fail(Strategy):
    """
    Report that the tool cannot be provided on this node.

    Attributes:
        message: Message to log (a default is used when empty)
        fail_the_build: Raise after logging instead of returning the preferred location
    """
    message: str | None = None
    fail_the_build: bool = True

    display_name: ClassVar[str] = "Fail"

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        prefix = f"[{context.tool_name}] - "
        message = (self.message or "").strip() or DEFAULT_FAIL_MESSAGE
        context.emit(prefix + message, logging.WARNING)
        if self.fail_the_build:
            raise NotFound(prefix + "Installation has been interrupted")
        return preferred_location(node, context.tool_name)

    def _fields_to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "fail_the_build": self.fail_the_build}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Fail:
        """Create Fail from dictionary."""
        return Fail(
            label=data.get("label") or None,
            message=data.get("message") or None,
            fail_the_build=bool(data.get("fail_the_build", True)),
        )


@register("run_install_command")
@dataclass(frozen=True)
class RunInstallCommand(Strategy):
    """
    Run a shell command in the preferred location to install the tool.

    Attributes:
        command: Shell command (CRLF line endings are normalised)
        tool_home: Tool home relative to the preferred location
        fail_on_substitution: Fail if ``${VAR}`` references cannot be resolved
    """
    command: str = ""
    tool_home: str = ""
    fail_on_substitution: bool = False

    display_name: ClassVar[str] = "Run install command"

    def __post_init__(self):
        """Normalise line endings after initialization."""
        object.__setattr__(self, "command", self.command.replace("\r\n", "\n"))

    def shell_argv(self, node: Node) -> list[str]:
        if node.is_windows():
            return ["cmd", "/c", self.command]
        return ["sh", "-c", self.command]

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        if not self.command:
            raise ConfigurationError("Install command is not set")
        home = substitute_node_variables(
            self.tool_home, node, context, "Tool Home", self.fail_on_substitution,
        )
        directory = preferred_location(node, context.tool_name)
        try:
            node.mkdirs(directory)
        except OSError as e:
            raise FilesystemError(f"Cannot create {directory}: {e}", path=directory) from e

        result = node.run(self.shell_argv(node), cwd=directory)
        for line in (result.stdout + result.stderr).splitlines():
            context.emit(line)
        if not result.success:
            raise ResolutionError(f"Command returned status {result.exit_code}")
        return os.path.join(directory, home)

    def _fields_to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "tool_home": self.tool_home,
            "fail_on_substitution": self.fail_on_substitution,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> RunInstallCommand:
        """Create RunInstallCommand from dictionary."""
        return RunInstallCommand(
            label=data.get("label") or None,
            command=data.get("command") or "",
            tool_home=data.get("tool_home") or "",
            fail_on_substitution=bool(data.get("fail_on_substitution", False)),
        )


def strategy_from_dict(data: dict[str, Any]) -> Strategy:
    """
    Build a strategy from its configuration.

    Args:
        data: Mapping with a "type" key naming the strategy, plus its fields

    Returns:
        Strategy instance

    Raises:
        ConfigurationError: If the type is missing or unknown
    """
    # Variants defined in other modules register on import
    from . import download, orchestrator  # noqa: F401

    if not isinstance(data, dict):
        raise ConfigurationError(f"Strategy configuration must be a mapping, got {type(data).__name__}")
    type_name = data.get("type")
    if not type_name:
        raise ConfigurationError("Strategy configuration has no 'type'")
    cls = STRATEGY_TYPES.get(type_name)
    if cls is None:
        raise ConfigurationError(
            f"Unknown strategy type: {type_name}. "
            f"Must be one of: {', '.join(sorted(STRATEGY_TYPES))}"
        )
    return cls.from_dict(data)
