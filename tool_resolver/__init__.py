"""
tool-resolver - Locate tools on a node, or download and install them.

Core Modules:
- Versions: Dependency-free version comparison and range checking
- Fetcher: Conditional, authenticated download-and-unpack with cache marker
- Orchestrator: Ordered fallback across strategies with retry budgets
- Strategies: Search PATH, fixed directory, shared location, install command, fail
- Foundation: Nodes, credentials, configuration, logging
"""

__version__ = "1.0.0"
__author__ = "tool-resolver Contributors"

# Version info for backward compatibility
VERSION = __version__

# Errors
from .errors import (
    ResolutionError,
    ConfigurationError,
    NotFound,
    WrongVersion,
    HttpFailure,
    NetworkFailure,
    FilesystemError,
    UnpackError,
    AllStrategiesExhausted,
)

# Versions
from .versions import (
    VersionConstraint,
    compare_versions,
    parse_version,
    check_version_in_range,
    describe_version_check,
    validate_constraint_fields,
)

# Nodes and credentials
from .nodes import Node, LocalNode, CommandResult
from .credentials import Credentials, CredentialLookup, StaticCredentialStore, resolve_credentials

# Fetching
from .fetcher import FetchRequest, download_and_unpack, describe_http_failure, validate_url

# Strategies
from .strategies import (
    Strategy,
    ResolutionContext,
    SearchPath,
    SearchFixedDirectory,
    AlreadyInSharedLocation,
    Fail,
    RunInstallCommand,
    preferred_location,
    strategy_from_dict,
)
from .download import DownloadArchive
from .orchestrator import FallbackGroup, RetryPolicy, format_attempt_message

# Configuration and logging
from .config import Config, Preferences, load_config, load_config_file, validate_config
from .logging_config import setup_logging, get_logger

__all__ = [
    "__version__",
    "VERSION",
    # Errors
    "ResolutionError",
    "ConfigurationError",
    "NotFound",
    "WrongVersion",
    "HttpFailure",
    "NetworkFailure",
    "FilesystemError",
    "UnpackError",
    "AllStrategiesExhausted",
    # Versions
    "VersionConstraint",
    "compare_versions",
    "parse_version",
    "check_version_in_range",
    "describe_version_check",
    "validate_constraint_fields",
    # Nodes and credentials
    "Node",
    "LocalNode",
    "CommandResult",
    "Credentials",
    "CredentialLookup",
    "StaticCredentialStore",
    "resolve_credentials",
    # Fetching
    "FetchRequest",
    "download_and_unpack",
    "describe_http_failure",
    "validate_url",
    # Strategies
    "Strategy",
    "ResolutionContext",
    "SearchPath",
    "SearchFixedDirectory",
    "AlreadyInSharedLocation",
    "Fail",
    "RunInstallCommand",
    "DownloadArchive",
    "FallbackGroup",
    "RetryPolicy",
    "format_attempt_message",
    "preferred_location",
    "strategy_from_dict",
    # Configuration and logging
    "Config",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    "setup_logging",
    "get_logger",
]
