"""
Execution nodes: where tools are looked for and installed.

Strategies only talk to a node through the Node protocol below. LocalNode
implements it for the machine we are running on; a remote implementation
only has to provide the same methods, with fetch() as its explicit
request/result boundary for downloads.
"""

from __future__ import annotations

import logging
import os
import platform
import shutil
import stat
import subprocess
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Mapping, Protocol, Sequence, runtime_checkable

import rarfile

from .common import is_windows

if TYPE_CHECKING:
    from .fetcher import FetchRequest

logger = logging.getLogger(__name__)

DEFAULT_TOOLS_ROOT = os.path.join(os.path.expanduser("~"), ".cache", "tool-resolver", "tools")

# Zip archives need random access; bodies up to this size stay in memory
ZIP_SPOOL_MAX_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running a command on a node.

    Attributes:
        exit_code: Process exit code (-1 if the command could not be started)
        stdout: Captured standard output
        stderr: Captured standard error
    """
    exit_code: int
    stdout: str
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class Node(Protocol):
    """Capabilities a node must offer to the resolution strategies."""

    name: str
    labels: frozenset[str]
    tools_root: str

    def is_remote(self) -> bool: ...

    def is_windows(self) -> bool: ...

    def getenv(self, name: str) -> str | None: ...

    def environment(self) -> Mapping[str, str]: ...

    def exists(self, path: str) -> bool: ...

    def is_executable_file(self, path: str) -> bool: ...

    def list_dir(self, path: str) -> list[str]: ...

    def mkdirs(self, path: str) -> None: ...

    def delete_contents(self, path: str) -> None: ...

    def last_modified(self, path: str) -> int | None: ...

    def touch(self, path: str, timestamp_millis: int) -> None: ...

    def run(self, argv: Sequence[str], cwd: str | None = None) -> CommandResult: ...

    def unpack_zip(self, stream: IO[bytes], dest_dir: str) -> None: ...

    def unpack_tar_gz(self, stream: IO[bytes], dest_dir: str) -> None: ...

    def unpack_rar(self, stream: IO[bytes], dest_dir: str) -> None: ...

    def set_executable_recursive(self, dest_dir: str) -> None: ...

    def fetch(self, request: FetchRequest, log: logging.Logger | None = None) -> int | None: ...


@dataclass
class LocalNode:
    """
    The machine this process runs on.

    Attributes:
        name: Display name used in log messages
        labels: Labels used to decide which strategies apply
        tools_root: Directory under which per-tool install locations live
        env: Environment variables seen by commands and PATH searches
        command_timeout: Timeout in seconds for commands run on the node
    """
    name: str = field(default_factory=lambda: platform.node() or "local")
    labels: frozenset[str] = frozenset()
    tools_root: str = DEFAULT_TOOLS_ROOT
    env: dict[str, str] = field(default_factory=lambda: dict(os.environ))
    command_timeout: float | None = None

    def is_remote(self) -> bool:
        return False

    def is_windows(self) -> bool:
        return is_windows()

    def getenv(self, name: str) -> str | None:
        return self.env.get(name)

    def environment(self) -> Mapping[str, str]:
        return dict(self.env)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def is_executable_file(self, path: str) -> bool:
        return os.path.isfile(path) and os.access(path, os.X_OK)

    def list_dir(self, path: str) -> list[str]:
        if not os.path.isdir(path):
            return []
        return sorted(os.listdir(path))

    def mkdirs(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)

    def delete_contents(self, path: str) -> None:
        """Remove everything inside ``path``, keeping the directory itself."""
        for entry in os.listdir(path):
            full = os.path.join(path, entry)
            if os.path.isdir(full) and not os.path.islink(full):
                shutil.rmtree(full)
            else:
                os.unlink(full)

    def last_modified(self, path: str) -> int | None:
        try:
            return int(os.stat(path).st_mtime * 1000)
        except FileNotFoundError:
            return None

    def touch(self, path: str, timestamp_millis: int) -> None:
        """Create ``path`` if needed and set its mtime to the given epoch millis."""
        if not os.path.exists(path):
            with open(path, "a", encoding="utf-8"):
                pass
        seconds = timestamp_millis / 1000.0
        os.utime(path, (seconds, seconds))

    def run(self, argv: Sequence[str], cwd: str | None = None) -> CommandResult:
        """Run a command and capture its output; never raises for a failing command."""
        logger.debug(f"Running on {self.name}: {' '.join(argv)} (cwd={cwd})")
        try:
            result = subprocess.run(
                list(argv),
                cwd=cwd,
                env=self.env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                check=False,
            )
            return CommandResult(result.returncode, result.stdout or "", result.stderr or "")
        except subprocess.TimeoutExpired:
            return CommandResult(-1, "", f"Command timed out after {self.command_timeout}s")
        except FileNotFoundError:
            return CommandResult(-1, "", f"Command not found: {argv[0] if argv else ''}")
        except NotADirectoryError:
            return CommandResult(-1, "", f"Working directory is not a directory: {cwd}")

    def unpack_zip(self, stream: IO[bytes], dest_dir: str) -> None:
        with tempfile.SpooledTemporaryFile(max_size=ZIP_SPOOL_MAX_BYTES) as spool:
            shutil.copyfileobj(stream, spool)
            spool.seek(0)
            with zipfile.ZipFile(spool) as archive:
                archive.extractall(dest_dir)

    def unpack_tar_gz(self, stream: IO[bytes], dest_dir: str) -> None:
        with tarfile.open(fileobj=stream, mode="r|gz") as archive:
            archive.extractall(dest_dir, filter="data")

    def unpack_rar(self, stream: IO[bytes], dest_dir: str) -> None:
        # The unrar backend reads archives from a named file only
        with tempfile.TemporaryDirectory() as scratch:
            path = os.path.join(scratch, "download.rar")
            with open(path, "wb") as out:
                shutil.copyfileobj(stream, out)
            with rarfile.RarFile(path) as archive:
                archive.extractall(dest_dir)

    def set_executable_recursive(self, dest_dir: str) -> None:
        """Mark every file under ``dest_dir`` executable (no-op on Windows)."""
        if self.is_windows():
            return
        for root, _dirs, files in os.walk(dest_dir):
            for name in files:
                path = os.path.join(root, name)
                if os.path.islink(path):
                    continue
                mode = os.stat(path).st_mode
                os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def fetch(self, request: FetchRequest, log: logging.Logger | None = None) -> int | None:
        from .fetcher import download_and_unpack
        return download_and_unpack(request, self, log)
