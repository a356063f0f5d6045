"""
Conditional, authenticated download-and-unpack of tool archives.

One conditional request is made per resolution. If the server says the
archive has not changed since the last successful fetch, nothing on disk is
touched. If the server answers with an unexpected status and an earlier
installation exists, that installation can be reused instead of failing.
"""

from __future__ import annotations

import base64
import email.utils
import logging
import tarfile
import urllib.error
import urllib.parse
import urllib.request
import zipfile
from contextlib import closing
from dataclasses import dataclass, field
from datetime import timezone
from typing import IO, Any, Mapping

import rarfile

from .errors import ConfigurationError, FilesystemError, HttpFailure, NetworkFailure, UnpackError
from .nodes import Node

logger = logging.getLogger(__name__)

USER_AGENT = "tool-resolver/1.0"
DEFAULT_TIMEOUT_SECONDS = 30.0

HTTP_OK = 200
HTTP_NOT_MODIFIED = 304
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_NOT_FOUND = 404


@dataclass(frozen=True)
class FetchRequest:
    """
    Everything needed to fetch one archive onto one node.

    This is also the message handed to Node.fetch() when the download has
    to happen on a remote node.

    Attributes:
        uri: What to download
        username: Username for basic authentication, or None for anonymous
        password: Password for the username
        local_timestamp: Epoch millis of the last successful fetch, or None
        target_dir: Where to unpack; None only validates the uri and credentials
        node_name: Node display name, for log messages only
        fallback_to_existing: Reuse an existing installation on bad HTTP responses
        timeout: Socket timeout in seconds
    """
    uri: str
    username: str | None = None
    password: str | None = field(default=None, repr=False)
    local_timestamp: int | None = None
    target_dir: str | None = None
    node_name: str = ""
    fallback_to_existing: bool = False
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS


class CountingReader:
    """Read-only stream wrapper that counts the bytes handed out."""

    def __init__(self, raw: IO[bytes]):
        self._raw = raw
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        data = self._raw.read(size)
        self.bytes_read += len(data)
        return data

    def readable(self) -> bool:
        return True


def format_http_date(timestamp_millis: int) -> str:
    """Format epoch millis as an RFC 1123 date for HTTP headers."""
    return email.utils.formatdate(timestamp_millis / 1000.0, usegmt=True)


def parse_http_date(value: str | None) -> int | None:
    """
    Parse an HTTP date header into epoch millis.

    Returns:
        Epoch millis, or None if the value is missing or unparseable
    """
    if not value:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        # "-0000" means UTC with no zone information
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def basic_auth_header(username: str, password: str) -> str:
    """Build a preemptive basic authentication header value."""
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def build_http_request(request: FetchRequest) -> urllib.request.Request:
    """
    Build the HTTP request for a fetch.

    HEAD is used when there is no target directory (validation only).
    """
    headers = {"User-Agent": USER_AGENT}
    if request.local_timestamp is not None:
        headers["If-Modified-Since"] = format_http_date(request.local_timestamp)
    if request.username is not None and request.password is not None:
        headers["Authorization"] = basic_auth_header(request.username, request.password)
    method = "HEAD" if request.target_dir is None else "GET"
    return urllib.request.Request(request.uri, headers=headers, method=method)


def _open(http_request: urllib.request.Request, request: FetchRequest) -> Any:
    """Send the request; HTTP error statuses come back as the response object."""
    try:
        return urllib.request.urlopen(http_request, timeout=request.timeout)
    except urllib.error.HTTPError as e:
        return e
    except ValueError as e:
        raise ConfigurationError(f"Malformed URL {request.uri}: {e}") from e
    except OSError as e:
        # URLError, socket timeouts, connection resets
        reason = getattr(e, "reason", e)
        raise NetworkFailure(f"Could not connect to {request.uri}: {reason}", uri=request.uri) from e


def _emit(log: logging.Logger | None, msg: str) -> None:
    if log is None:
        logger.debug(msg)
    else:
        log.info(msg)


def existing_installation_available(node: Node, target_dir: str | None) -> bool:
    """True if ``target_dir`` exists on the node and has something in it."""
    return target_dir is not None and node.exists(target_dir) and bool(node.list_dir(target_dir))


def interpret_response(
    request: FetchRequest,
    node: Node,
    status: int,
    headers: Mapping[str, str],
    log: logging.Logger | None = None,
) -> int | None:
    """
    Decide what a response means for the local copy.

    Returns:
        Epoch millis of the remote resource if it should be downloaded,
        None if there is nothing to do

    Raises:
        HttpFailure: If the response cannot be used and no fallback applies
    """
    if status == HTTP_NOT_MODIFIED:
        return None

    if status == HTTP_OK:
        header = headers.get("Last-Modified")
        if not header:
            raise HttpFailure(request.uri, request.username,
                              reason="due to missing Last-Modified header value.")
        remote = parse_http_date(header)
        if remote is None:
            raise HttpFailure(request.uri, request.username,
                              reason=f'due to invalid Last-Modified header value, "{header}".')
        if request.local_timestamp is None or remote > request.local_timestamp:
            return remote
        return None

    if request.fallback_to_existing and existing_installation_available(node, request.target_dir):
        _emit(log, f"Server responded with HTTP status {status}; "
                   f"falling back to existing installation in {request.target_dir}")
        return None

    raise HttpFailure(request.uri, request.username, status)


def _content_length(headers: Mapping[str, str]) -> int | None:
    value = headers.get("Content-Length")
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _unpack(response: Any, request: FetchRequest, node: Node, log: logging.Logger | None) -> None:
    target = request.target_dir
    who = "" if request.username is None else f" as {request.username}"
    try:
        if node.exists(target):
            node.delete_contents(target)
            _emit(log, f"Downloading newer {request.uri}{who} to {target} on {request.node_name}")
        else:
            node.mkdirs(target)
            _emit(log, f"Downloading {request.uri}{who} to {target} on {request.node_name}")
    except OSError as e:
        raise FilesystemError(f"Cannot prepare {target}: {e}", path=target) from e

    path = urllib.parse.urlparse(request.uri).path
    expected_length = _content_length(response.headers)
    reader = CountingReader(response)
    try:
        if path.endswith(".zip"):
            node.unpack_zip(reader, target)
        elif path.endswith(".rar"):
            node.unpack_rar(reader, target)
        else:
            node.unpack_tar_gz(reader, target)
    except (OSError, EOFError, ValueError, zipfile.BadZipFile, tarfile.TarError, rarfile.Error) as e:
        raise UnpackError(request.uri, reader.bytes_read, expected_length) from e


def download_and_unpack(
    request: FetchRequest,
    node: Node,
    log: logging.Logger | None = None,
) -> int | None:
    """
    Fetch an archive if it changed and unpack it on the node.

    The caller is responsible for persisting the returned timestamp in the
    cache marker and for marking the unpacked files executable.

    Args:
        request: What to fetch and where to put it
        node: Node whose filesystem receives the archive contents
        log: Where to write progress lines, or None for silence

    Returns:
        Epoch millis of the remote resource if it was downloaded (or, in
        validate-only mode, if it would be), None if nothing was done

    Raises:
        HttpFailure: Server reachable but the response was unusable
        NetworkFailure: Server could not be reached
        UnpackError: Archive could not be unpacked
    """
    http_request = build_http_request(request)
    logger.debug(f"{http_request.get_method()} {request.uri} (local timestamp: {request.local_timestamp})")

    response = _open(http_request, request)
    with closing(response):
        remote_timestamp = interpret_response(request, node, response.status, response.headers, log)

        if request.target_dir is None:
            return remote_timestamp

        if remote_timestamp is None:
            _emit(log, f"Skipping download of {request.uri} to {request.target_dir} "
                       f"on {request.node_name}: already up to date")
            return None

        _unpack(response, request, node, log)
        return remote_timestamp


def describe_http_failure(error: HttpFailure) -> str:
    """
    Turn an HttpFailure into an actionable message.

    Distinguishes "credentials needed", "credentials rejected", "forbidden"
    and "not found" from generic server errors.
    """
    if error.status_code == HTTP_UNAUTHORIZED:
        if error.username is None:
            return "Server requires credentials; configure a credentials id for this URL."
        return f"Server rejected the credentials for user {error.username}."
    if error.status_code == HTTP_FORBIDDEN:
        if error.username is None:
            return "Server denied anonymous access; configure a credentials id for this URL."
        return f"User {error.username} is not permitted to access this URL."
    if error.status_code == HTTP_NOT_FOUND:
        return "Server responded 404 (not found); check the URL and that the credentials can see it."
    return f"Bad HTTP response from server: {error.message}"


def validate_url(
    uri: str,
    username: str | None = None,
    password: str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
) -> tuple[str, str]:
    """
    Probe a URL with the given credentials without downloading anything.

    Returns:
        Tuple of (level, message) where level is "ok" or "error"
    """
    request = FetchRequest(uri=uri, username=username, password=password, timeout=timeout)
    try:
        remote_timestamp = download_and_unpack(request, _NO_FILESYSTEM)
    except HttpFailure as e:
        return ("error", describe_http_failure(e))
    except ConfigurationError as e:
        return ("error", e.message)
    except NetworkFailure as e:
        return ("error", f"Could not connect: {e.message}")
    if remote_timestamp is None:
        return ("ok", f"{uri} is reachable.")
    return ("ok", f"{uri} is reachable (last modified {format_http_date(remote_timestamp)}).")


class _NoFilesystem:
    """Node stand-in for validate-only probes, which never touch a filesystem."""

    name = ""
    labels: frozenset[str] = frozenset()
    tools_root = ""

    def exists(self, path: str) -> bool:
        return False

    def list_dir(self, path: str) -> list[str]:
        return []


_NO_FILESYSTEM: Any = _NoFilesystem()
