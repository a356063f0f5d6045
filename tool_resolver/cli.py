"""
Command line interface.

Usage:
    tool-resolver resolve TOOL              # Print the tool home, installing if needed
    tool-resolver check-version --pattern RE --min 1.2 --command git --version
    tool-resolver compare 1.2 1.2.0         # Prints "<"
    tool-resolver probe URL                 # Check a download URL and its credentials
"""

from __future__ import annotations

import argparse
import sys
import urllib.parse
from typing import Sequence

from . import __version__
from .config import load_config
from .credentials import resolve_credentials
from .errors import ConfigurationError, ResolutionError
from .fetcher import validate_url
from .logging_config import get_logger, setup_logging
from .nodes import LocalNode
from .strategies import ResolutionContext
from .versions import VersionConstraint, compare_versions

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _report_error(error: BaseException) -> None:
    logger = get_logger()
    logger.error(str(error))
    remediation = getattr(error, "remediation", None)
    if remediation:
        logger.error(f"  {remediation}")
    cause = error.__cause__
    while cause is not None:
        logger.error(f"  caused by {type(cause).__name__}: {cause}")
        cause = cause.__cause__


def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve a configured tool on the local node and print its home."""
    logger = get_logger()
    try:
        config = load_config(args.config, verbose=args.verbose)
    except ValueError as e:
        logger.error(str(e))
        return EXIT_USAGE

    strategy = config.get_tool(args.tool)
    if strategy is None:
        logger.error(f"Tool '{args.tool}' is not configured")
        return EXIT_USAGE

    node = LocalNode(
        labels=frozenset(args.label or ()),
        tools_root=args.tools_root or config.preferences.tools_root,
    )
    context = ResolutionContext(
        tool_name=args.tool,
        credentials=config.credential_store(),
        global_environment=config.environment,
        log=logger,
        timeout=config.preferences.timeout_seconds,
    )
    try:
        location = strategy.resolve(node, context)
    except ResolutionError as e:
        _report_error(e)
        return EXIT_FAILED

    print(location)
    return EXIT_OK


def cmd_check_version(args: argparse.Namespace) -> int:
    """Parse a version from text or command output and check it against bounds."""
    logger = get_logger()
    try:
        constraint = VersionConstraint(
            command=tuple(args.command or ()),
            pattern=args.pattern,
            min=args.min,
            max=args.max,
        )
    except ConfigurationError as e:
        logger.error(e.message)
        return EXIT_USAGE

    if args.text is not None:
        output = args.text
    else:
        result = LocalNode().run(constraint.command)
        output = result.stdout

    parsed, in_range = constraint.evaluate(output)
    if parsed is None:
        logger.error("Version pattern did not match any line of the output")
        return EXIT_FAILED

    print(parsed)
    if in_range < 0:
        logger.error(f'Version "{parsed}" is lower than the minimum "{constraint.min}"')
        return EXIT_FAILED
    if in_range > 0:
        logger.error(f'Version "{parsed}" is higher than the maximum "{constraint.max}"')
        return EXIT_FAILED
    return EXIT_OK


def cmd_compare(args: argparse.Namespace) -> int:
    """Print how two versions compare."""
    result = compare_versions(args.a, args.b)
    print("<" if result < 0 else ">" if result > 0 else "=")
    return EXIT_OK


def cmd_probe(args: argparse.Namespace) -> int:
    """Check that a URL is reachable with the configured credentials."""
    logger = get_logger()
    username = password = None
    if args.credentials_id:
        try:
            config = load_config(args.config, verbose=args.verbose)
            host = urllib.parse.urlsplit(args.url).hostname
            credentials = resolve_credentials(config.credential_store(), args.credentials_id, host)
        except (ValueError, ConfigurationError) as e:
            logger.error(str(e))
            return EXIT_USAGE
        username, password = credentials.username, credentials.password

    level, message = validate_url(args.url, username, password, timeout=args.timeout)
    if level == "ok":
        print(message)
        return EXIT_OK
    logger.error(message)
    return EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tool-resolver",
        description="Find tools on this machine, or download and install them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="No console log output (use with --log-file)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write a debug log to this file",
    )
    subparsers = parser.add_subparsers(dest="command_name", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve a configured tool and print its home")
    resolve.add_argument("tool", help="Tool name as configured under 'tools'")
    resolve.add_argument("--config", help="Configuration file (takes priority over the standard locations)")
    resolve.add_argument("--tools-root", help="Install directory root (overrides configuration)")
    resolve.add_argument(
        "--label",
        action="append",
        help="Label of this node (repeatable); strategies with other labels are skipped",
    )
    resolve.set_defaults(func=cmd_resolve)

    check = subparsers.add_parser("check-version", help="Check a version against a range")
    check.add_argument("--pattern", required=True, help="Regex matched against each whole line")
    check.add_argument("--min", help="Inclusive minimum version")
    check.add_argument("--max", help="Inclusive maximum version")
    source = check.add_mutually_exclusive_group(required=True)
    source.add_argument("--text", help="Text to parse instead of running a command")
    source.add_argument(
        "--command",
        nargs=argparse.REMAINDER,
        help="Command to run (everything after --command)",
    )
    check.set_defaults(func=cmd_check_version)

    compare = subparsers.add_parser("compare", help="Compare two versions")
    compare.add_argument("a")
    compare.add_argument("b")
    compare.set_defaults(func=cmd_compare)

    probe = subparsers.add_parser("probe", help="Check a download URL without downloading")
    probe.add_argument("url")
    probe.add_argument("--config", help="Configuration file holding the credentials")
    probe.add_argument("--credentials-id", help="Credentials id from the configuration")
    probe.add_argument("--timeout", type=float, default=30.0, help="Timeout in seconds")
    probe.set_defaults(func=cmd_probe)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for tool-resolver."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    if args.command_name == "check-version" and args.text is None and not args.command:
        parser.error("--command needs a command to run")

    return args.func(args)


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
