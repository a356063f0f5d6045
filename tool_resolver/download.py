"""
Download-and-unpack strategy.

Archives are unpacked into the tool's preferred location on the node. A
``.timestamp`` file inside that directory records the Last-Modified time of
the archive that was unpacked, so unchanged archives are never fetched twice.
"""

from __future__ import annotations

import logging
import os
import urllib.parse
from dataclasses import dataclass
from typing import Any, ClassVar

from .credentials import resolve_credentials
from .errors import ConfigurationError, FilesystemError, HttpFailure, NetworkFailure, UnpackError
from .fetcher import FetchRequest, download_and_unpack
from .nodes import Node
from .strategies import ResolutionContext, Strategy, preferred_location, register

logger = logging.getLogger(__name__)

CACHE_MARKER = ".timestamp"


def parse_download_url(url: str | None) -> urllib.parse.SplitResult:
    """
    Parse and sanity-check a download URL.

    Raises:
        ConfigurationError: If the URL is empty or not an absolute http(s) URL
    """
    if not url:
        raise ConfigurationError("Download URL is not set")
    try:
        parts = urllib.parse.urlsplit(url)
        parts.port  # raises ValueError for a bad port
    except ValueError as e:
        raise ConfigurationError(f"Malformed URL {url}: {e}") from e
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"Malformed URL {url}: expected an absolute http or https URL")
    return parts


@register("download")
@dataclass(frozen=True)
class DownloadArchive(Strategy):
    """
    Download a zip or tar.gz archive and unpack it in the preferred location.

    Attributes:
        url: Archive URL; a path ending in ".zip" is unzipped, anything else is
            treated as a gzipped tarball
        credentials_id: Id of the credentials to send, or None for anonymous access
        subdir: Tool home relative to the unpack directory
        fallback_to_existing: Keep using an earlier download when the server
            answers with an unexpected status
    """
    url: str = ""
    credentials_id: str | None = None
    subdir: str | None = None
    fallback_to_existing: bool = False

    display_name: ClassVar[str] = "Download archive"

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        parts = parse_download_url(self.url)
        credentials = resolve_credentials(context.credentials, self.credentials_id, parts.hostname)

        directory = preferred_location(node, context.tool_name)
        marker = os.path.join(directory, CACHE_MARKER)
        local_timestamp = node.last_modified(marker) if node.exists(marker) else None

        request = FetchRequest(
            uri=self.url,
            username=credentials.username if credentials else None,
            password=credentials.password if credentials else None,
            local_timestamp=local_timestamp,
            target_dir=directory,
            node_name=node.name,
            fallback_to_existing=self.fallback_to_existing,
            timeout=context.timeout,
        )
        remote_timestamp = self._fetch(node, request, context)
        if remote_timestamp is not None:
            try:
                node.set_executable_recursive(directory)
                node.touch(marker, remote_timestamp)
            except OSError as e:
                raise FilesystemError(f"Cannot finish installing into {directory}: {e}", path=directory) from e

        if self.subdir:
            return os.path.join(directory, self.subdir)
        return directory

    def _fetch(self, node: Node, request: FetchRequest, context: ResolutionContext) -> int | None:
        """Fetch on the node itself if it is remote, else (or on failure) from here."""
        if node.is_remote():
            try:
                return node.fetch(request, context.log)
            except HttpFailure:
                # The server answered; asking again from here gets the same answer
                raise
            except (NetworkFailure, UnpackError, OSError) as e:
                context.emit(
                    f"Failed to download {request.uri} from {node.name}; will try from here instead: {e}",
                    logging.WARNING,
                )
        return download_and_unpack(request, node, context.log)

    def _fields_to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "credentials_id": self.credentials_id,
            "subdir": self.subdir,
            "fallback_to_existing": self.fallback_to_existing,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> DownloadArchive:
        """Create DownloadArchive from dictionary."""
        return DownloadArchive(
            label=data.get("label") or None,
            url=data.get("url") or "",
            credentials_id=data.get("credentials_id") or None,
            subdir=data.get("subdir") or None,
            fallback_to_existing=bool(data.get("fallback_to_existing", False)),
        )
