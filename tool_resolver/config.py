"""
Configuration file parsing and management.

Supports YAML configuration files, with JSON for ``.json`` files.
Merges configurations from multiple sources (custom path, project, user,
system, defaults) and applies environment variable overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

import yaml

from .common import vlog
from .credentials import Credentials, StaticCredentialStore
from .nodes import DEFAULT_TOOLS_ROOT
from .strategies import Strategy, strategy_from_dict
from .versions import validate_constraint_fields

logger = logging.getLogger(__name__)

# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".tool-resolver.yml",                              # Project root (highest priority)
    ".tool-resolver.yaml",                             # Alternative extension
    os.path.expanduser("~/.config/tool-resolver/config.yml"),  # User global
    os.path.expanduser("~/.config/tool-resolver/config.yaml"),
    "/etc/tool-resolver/config.yml",                   # System global
    "/etc/tool-resolver/config.yaml",
]

DEFAULT_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class Preferences:
    """
    Global resolution preferences.

    Attributes:
        tools_root: Directory under which tools are installed on the local node
        timeout_seconds: Timeout for network operations
    """
    tools_root: str = DEFAULT_TOOLS_ROOT
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate preferences after initialization."""
        if not self.tools_root:
            raise ValueError("Invalid tools_root: must not be empty")

        if self.timeout_seconds < 1 or self.timeout_seconds > 600:
            raise ValueError(
                f"Invalid timeout_seconds: {self.timeout_seconds}. "
                "Must be between 1 and 600"
            )

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            tools_root=os.path.expanduser(data.get("tools_root") or DEFAULT_TOOLS_ROOT),
            timeout_seconds=int(data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for tool resolution.

    Attributes:
        version: Config schema version
        preferences: Global preferences
        environment: Global variables for ``${VAR}`` substitution
        credentials: Download credentials by id
        tools: Root strategy per tool name
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    preferences: Preferences = field(default_factory=Preferences)
    environment: dict[str, str] = field(default_factory=dict)
    credentials: dict[str, Credentials] = field(default_factory=dict)
    tools: dict[str, Strategy] = field(default_factory=dict)
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        tools_data = data.get("tools") or {}
        tools = {
            tool_name: strategy_from_dict(tool_config)
            for tool_name, tool_config in tools_data.items()
        }

        credentials_data = data.get("credentials") or {}
        credentials = {
            credentials_id: Credentials.from_dict(entry or {})
            for credentials_id, entry in credentials_data.items()
        }

        environment_data = data.get("environment") or {}
        environment = {str(name): str(value) for name, value in environment_data.items()}

        return Config(
            version=data.get("version", 1),
            preferences=Preferences.from_dict(data.get("preferences") or {}),
            environment=environment,
            credentials=credentials,
            tools=tools,
            source=source,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization (passwords are omitted)."""
        return {
            "version": self.version,
            "preferences": {
                "tools_root": self.preferences.tools_root,
                "timeout_seconds": self.preferences.timeout_seconds,
            },
            "environment": dict(self.environment),
            "credentials": {
                credentials_id: {"username": entry.username, "host": entry.host}
                for credentials_id, entry in self.credentials.items()
            },
            "tools": {name: strategy.to_dict() for name, strategy in self.tools.items()},
        }

    def get_tool(self, tool_name: str) -> Strategy | None:
        """
        Get the root strategy for a tool.

        Args:
            tool_name: Name of the tool

        Returns:
            Strategy for the tool, or None if not configured
        """
        return self.tools.get(tool_name)

    def credential_store(self) -> StaticCredentialStore:
        return StaticCredentialStore(self.credentials)

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        merged_tools = dict(other.tools)
        merged_tools.update(self.tools)

        merged_credentials = dict(other.credentials)
        merged_credentials.update(self.credentials)

        merged_environment = dict(other.environment)
        merged_environment.update(self.environment)

        # Prefer this config's values where they differ from the defaults
        merged_preferences = Preferences(
            tools_root=self.preferences.tools_root if self.preferences.tools_root != DEFAULT_TOOLS_ROOT else other.preferences.tools_root,
            timeout_seconds=self.preferences.timeout_seconds if self.preferences.timeout_seconds != DEFAULT_TIMEOUT_SECONDS else other.preferences.timeout_seconds,
        )

        return Config(
            version=self.version,
            preferences=merged_preferences,
            environment=merged_environment,
            credentials=merged_credentials,
            tools=merged_tools,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    ``.json`` files are read as JSON, everything else as YAML.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        logger.warning(f"Ignoring config file {file_path}: it cannot be read or parsed")
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"Ignoring config file {file_path}: {e}")
        return None


def apply_env_overrides(config: Config, environ: Mapping[str, str] | None = None) -> Config:
    """
    Apply TOOL_RESOLVER_* environment variable overrides.

    Args:
        config: Loaded configuration
        environ: Environment to read (defaults to os.environ)

    Returns:
        Config with overrides applied

    Raises:
        ValueError: If an override has an invalid value
    """
    environ = os.environ if environ is None else environ
    preferences = config.preferences

    tools_root = environ.get("TOOL_RESOLVER_TOOLS_ROOT")
    if tools_root:
        preferences = replace(preferences, tools_root=os.path.expanduser(tools_root))

    timeout = environ.get("TOOL_RESOLVER_TIMEOUT")
    if timeout:
        try:
            preferences = replace(preferences, timeout_seconds=int(timeout))
        except ValueError as e:
            raise ValueError(f"Invalid TOOL_RESOLVER_TIMEOUT: {timeout!r} ({e})") from e

    if preferences is config.preferences:
        return config
    return replace(config, preferences=preferences)


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Environment variable overrides (TOOL_RESOLVER_TOOLS_ROOT, TOOL_RESOLVER_TIMEOUT)
    2. Custom path (if provided)
    3. Project .tool-resolver.yml
    4. User ~/.config/tool-resolver/config.yml
    5. System /etc/tool-resolver/config.yml
    6. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)
        vlog(f"Using custom config: {custom_path}", verbose)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return apply_env_overrides(Config())

    # Merge configs (first config has highest priority)
    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return apply_env_overrides(merged)


def _walk_strategies(strategy: Strategy):
    yield strategy
    for child in getattr(strategy, "strategies", ()):
        yield from _walk_strategies(child)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    for tool_name, root in config.tools.items():
        for strategy in _walk_strategies(root):
            credentials_id = getattr(strategy, "credentials_id", None)
            if credentials_id and credentials_id not in config.credentials:
                warnings.append(
                    f"Tool '{tool_name}': unknown credentials id '{credentials_id}'"
                )

            constraint = getattr(strategy, "version", None)
            if constraint is not None:
                for problem in validate_constraint_fields(
                    constraint.command, constraint.pattern, constraint.min, constraint.max,
                ):
                    warnings.append(f"Tool '{tool_name}' ({strategy.display_name}): {problem}")

            if strategy.type_name == "fallback" and not getattr(strategy, "strategies", ()):
                warnings.append(f"Tool '{tool_name}': fallback group has no strategies")

            if strategy.type_name == "fail" and not getattr(strategy, "message", None):
                warnings.append(f"Tool '{tool_name}': fail strategy has no message")

    return warnings
