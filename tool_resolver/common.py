"""
Common utilities shared across tool_resolver modules.
"""

from __future__ import annotations

import os
import re
import sys
from typing import Mapping

VARIABLE_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_.]*)\}")
UNSAFE_PATH_CHARS_RE = re.compile(r"[^A-Za-z0-9_.\-]")


def is_windows() -> bool:
    """Check if the local machine is running Windows."""
    return sys.platform == "win32"


def substitute_variables(text: str | None, *environments: Mapping[str, str]) -> str | None:
    """
    Expand ``${NAME}`` references.

    Each environment is consulted in order; the first one defining a name
    wins. Unknown references are left in place.

    Args:
        text: String possibly containing ``${NAME}`` references
        environments: Variable maps, highest priority first

    Returns:
        Expanded string (None stays None)
    """
    if text is None or "${" not in text:
        return text

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        for env in environments:
            if name in env:
                return env[name]
        return match.group(0)

    return VARIABLE_RE.sub(replace, text)


def has_unresolved_variables(text: str | None) -> bool:
    """Check whether a string still contains ``${...}`` references."""
    return text is not None and "${" in text


def sanitize_tool_name(name: str) -> str:
    """
    Turn a tool name into something safe to use as a directory name.

    Args:
        name: Display name of the tool (e.g., "JDK 17 (Temurin)")

    Returns:
        Name with unsafe characters replaced (e.g., "JDK_17__Temurin_")
    """
    return UNSAFE_PATH_CHARS_RE.sub("_", name) or "_"


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("TOOL_RESOLVER_DEBUG", "0") == "1":
        from .logging_config import get_logger
        get_logger().info(msg)
