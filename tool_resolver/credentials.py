"""
Credential lookup for authenticated downloads.

Strategies never read secrets themselves; they ask the CredentialLookup
injected through the resolution context.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from .errors import ConfigurationError


@dataclass(frozen=True)
class Credentials:
    """
    Username/password pair, optionally restricted to one host.

    Attributes:
        username: User to authenticate as
        password: Password for the user
        host: Host the credentials may be sent to, or None for any host
    """
    username: str
    password: str = field(default="", repr=False)
    host: str | None = None

    def __post_init__(self):
        """Validate credentials after initialization."""
        if not self.username:
            raise ConfigurationError("Credentials must have a username")

    def matches_host(self, host: str | None) -> bool:
        if self.host is None:
            return True
        return host is not None and host.lower() == self.host.lower()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Credentials:
        """Create Credentials from dictionary."""
        return Credentials(
            username=data.get("username", ""),
            password=str(data.get("password", "")),
            host=data.get("host") or None,
        )


@runtime_checkable
class CredentialLookup(Protocol):
    """Anything able to find credentials by id for a given host."""

    def lookup(self, credentials_id: str, host: str | None) -> Credentials | None: ...


class StaticCredentialStore:
    """
    Credential lookup backed by a fixed mapping, usually from configuration.

    Entries scoped to a host are only returned for that host.
    """

    def __init__(self, entries: dict[str, Credentials] | None = None):
        self._entries = dict(entries or {})

    def __contains__(self, credentials_id: str) -> bool:
        return credentials_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> list[str]:
        return sorted(self._entries)

    def lookup(self, credentials_id: str, host: str | None) -> Credentials | None:
        entry = self._entries.get(credentials_id)
        if entry is None or not entry.matches_host(host):
            return None
        return entry

    @staticmethod
    def from_dict(data: dict[str, Any]) -> StaticCredentialStore:
        """Create a store from a mapping of id to credential fields."""
        return StaticCredentialStore({
            credentials_id: Credentials.from_dict(entry or {})
            for credentials_id, entry in data.items()
        })


def resolve_credentials(
    store: CredentialLookup | None,
    credentials_id: str | None,
    host: str | None,
) -> Credentials | None:
    """
    Find the credentials a download should use.

    Args:
        store: Lookup to consult (may be None when nothing is configured)
        credentials_id: Configured credentials id, or None/"" for anonymous access
        host: Host of the URL the credentials will be sent to

    Returns:
        Credentials, or None for anonymous access

    Raises:
        ConfigurationError: If an id is configured but cannot be found
    """
    if not credentials_id:
        return None
    found = store.lookup(credentials_id, host) if store is not None else None
    if found is None:
        raise ConfigurationError(
            f"Unable to find credentials with id '{credentials_id}' for host {host}",
            remediation="Add the credentials to the 'credentials' section of the configuration",
        )
    return found
