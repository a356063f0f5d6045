"""
Version parsing, comparison and range checking.

Versions are kept as raw dot-separated strings and compared lazily, segment
by segment. Each segment is a numeric prefix followed by a free-form suffix,
so "1.2.3", "1.2.3A", "2.something" and plain "A" are all comparable without
any third-party version library.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Pattern, Sequence

from .errors import ConfigurationError


def _split_segment(segment: str) -> tuple[int, str]:
    """Split a segment into (numeric prefix, remainder).

    An empty numeric prefix is -1 so that "A" sorts below "0".
    """
    index = 0
    length = len(segment)
    while index < length and "0" <= segment[index] <= "9":
        index += 1
    number = int(segment[:index]) if index else -1
    return number, segment[index:]


def _compare_segments(a: str | None, b: str | None) -> int:
    # A missing segment sorts below any present one, including "".
    if a is None:
        return 0 if b is None else -1
    if b is None:
        return 1

    a_number, a_rest = _split_segment(a)
    b_number, b_rest = _split_segment(b)
    if a_number != b_number:
        return 1 if a_number > b_number else -1
    if a_rest == b_rest:
        return 0
    return 1 if a_rest > b_rest else -1


def compare_versions(a: str | None, b: str | None) -> int:
    """
    Compare two version strings.

    None sorts lowest. Note that "1.2" sorts below "1.2.0": the missing third
    segment is lower than a present "0". Callers rely on this ordering, so it
    must not be normalised away.

    Args:
        a: First version (or None)
        b: Second version (or None)

    Returns:
        -1 if a < b, 0 if a == b, 1 if a > b
    """
    split_a = [] if a is None else a.split(".")
    split_b = [] if b is None else b.split(".")
    for i in range(max(len(split_a), len(split_b))):
        part_a = split_a[i] if i < len(split_a) else None
        part_b = split_b[i] if i < len(split_b) else None
        result = _compare_segments(part_a, part_b)
        if result != 0:
            return result
    return 0


def parse_version(pattern: str | Pattern[str], output: str) -> str | None:
    """
    Extract a version string from command output.

    The output is scanned line by line; the first line the pattern matches
    in full wins.

    Args:
        pattern: Regex (string or compiled) matched against each whole line
        output: Multi-line command output

    Returns:
        Concatenation of all capturing groups of the first matching line,
        or None if no line matches
    """
    regex = re.compile(pattern) if isinstance(pattern, str) else pattern
    for line in output.splitlines():
        match = regex.fullmatch(line)
        if match:
            return "".join(group for group in match.groups() if group is not None)
    return None


def check_version_in_range(
    version_min: str | None,
    version_max: str | None,
    actual: str | None,
) -> int:
    """
    Check a version against inclusive bounds.

    Args:
        version_min: Minimum acceptable version, or None/"" for no minimum
        version_max: Maximum acceptable version, or None/"" for no maximum
        actual: Version to check (None sorts lowest)

    Returns:
        -1 if too low, 1 if too high, 0 if acceptable
    """
    if version_min and compare_versions(actual, version_min) < 0:
        return -1
    if version_max and compare_versions(actual, version_max) > 0:
        return 1
    return 0


def _command_from_value(value: Any) -> tuple[str, ...]:
    """Accept a list of argv items or a newline-separated string."""
    if not value:
        return ()
    if isinstance(value, str):
        lines = value.replace("\r\n", "\n").split("\n")
    else:
        lines = [str(item) for item in value]
    return tuple(line for line in lines if line)


@dataclass(frozen=True)
class VersionConstraint:
    """
    How to ask a tool for its version and which versions are acceptable.

    Attributes:
        command: argv of the version command, run in the tool home
        pattern: Regex matched against each whole line of the output
        min: Inclusive minimum version, or None
        max: Inclusive maximum version, or None
    """
    command: tuple[str, ...] = ()
    pattern: str | None = None
    min: str | None = None
    max: str | None = None
    _compiled: Pattern[str] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        """Validate constraint after initialization."""
        compiled = None
        if self.pattern:
            try:
                compiled = re.compile(self.pattern)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid version pattern {self.pattern!r}: {e}"
                ) from e
        object.__setattr__(self, "_compiled", compiled)

        if self.min and self.max and compare_versions(self.min, self.max) > 0:
            raise ConfigurationError(
                f"Invalid version range: maximum {self.max!r} is lower than minimum {self.min!r}"
            )

    @property
    def is_active(self) -> bool:
        """True when a command, a pattern and at least one bound are set."""
        return bool(self.command and self._compiled is not None and (self.min or self.max))

    def evaluate(self, output: str) -> tuple[str | None, int]:
        """
        Parse command output and check it against the bounds.

        Returns:
            Tuple of (parsed_version, range_result)
        """
        parsed = parse_version(self._compiled, output) if self._compiled is not None else None
        return parsed, check_version_in_range(self.min, self.max, parsed)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> VersionConstraint:
        """Create VersionConstraint from dictionary."""
        return VersionConstraint(
            command=_command_from_value(data.get("command")),
            pattern=data.get("pattern") or None,
            min=data.get("min") or None,
            max=data.get("max") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "command": list(self.command),
            "pattern": self.pattern,
            "min": self.min,
            "max": self.max,
        }


def describe_version_check(
    sample_output: str | None,
    command: Sequence[str] | str | None,
    pattern: str | None,
    version_min: str | None,
    version_max: str | None,
) -> tuple[str, str]:
    """
    Explain what a version check would make of some sample output.

    Used to validate tool definitions before they are used.

    Returns:
        Tuple of (level, message) where level is "ok", "warning" or "error"
    """
    if not sample_output:
        return ("ok", "")
    if not _command_from_value(command):
        return ("warning", "No version validation will be performed: no version command is set.")
    if not pattern:
        return ("warning", "No version validation will be performed: no version pattern is set.")
    if not version_min and not version_max:
        return ("warning", "No version validation will be performed: neither minimum nor maximum version is set.")
    try:
        regex = re.compile(pattern)
    except re.error as e:
        return ("warning", f"No version validation will be performed: version pattern {pattern!r} is invalid ({e}).")

    parsed = parse_version(regex, sample_output)
    if not parsed:
        return ("warning", "Version pattern did not match any line of the output.")
    result = check_version_in_range(version_min, version_max, parsed)
    if result < 0:
        return ("warning", f'Version "{parsed}" is lower than the minimum "{version_min}".')
    if result > 0:
        return ("warning", f'Version "{parsed}" is higher than the maximum "{version_max}".')
    return ("ok", f'Version "{parsed}" is acceptable.')


def validate_constraint_fields(
    command: Sequence[str] | str | None,
    pattern: str | None,
    version_min: str | None,
    version_max: str | None,
) -> list[str]:
    """
    Validate version-check settings and return a list of problems.

    Args:
        command: Version command, as argv list or newline-separated string
        pattern: Version regex
        version_min: Minimum version
        version_max: Maximum version

    Returns:
        List of problem descriptions (empty if valid)
    """
    problems = []
    if isinstance(command, str) and " " in command.strip() and "\n" not in command.strip():
        problems.append(
            "Version command contains a space but has no arguments; "
            "put the command and each argument on separate lines"
        )
    if _command_from_value(command):
        if not pattern:
            problems.append("Version pattern is empty")
        else:
            try:
                re.compile(pattern)
            except re.error as e:
                problems.append(f"Version pattern {pattern!r} is invalid: {e}")
        if pattern and not version_min and not version_max:
            problems.append("Neither minimum nor maximum version is specified")
    if version_min and version_max and compare_versions(version_min, version_max) > 0:
        problems.append(f"Maximum version must not be lower than minimum version {version_min!r}")
    return problems
