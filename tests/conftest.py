"""
Shared test helpers: in-memory archives and fake HTTP responses.
"""

import io
import logging
import tarfile
import zipfile

import pytest

from tool_resolver.logging_config import LOGGER_NAME
from tool_resolver.nodes import LocalNode


def make_tar_gz(files: dict[str, bytes]) -> bytes:
    """Build a gzipped tarball holding the given files."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, content in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def make_zip(files: dict[str, bytes]) -> bytes:
    """Build a zip archive holding the given files."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


class FakeResponse(io.BytesIO):
    """Stand-in for the object urlopen() returns."""

    def __init__(self, status: int, headers: dict | None = None, body: bytes = b""):
        super().__init__(body)
        self.status = status
        self.headers = dict(headers or {})


@pytest.fixture
def local_node(tmp_path):
    """Local node with an isolated tools root and empty environment."""
    return LocalNode(name="test-node", tools_root=str(tmp_path / "tools"), env={})


@pytest.fixture
def sink():
    """Logger used as the user-visible log sink."""
    logger = logging.getLogger("resolution_sink")
    logger.setLevel(logging.DEBUG)
    return logger


def sink_lines(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.name == "resolution_sink"]


@pytest.fixture
def restore_logger():
    """Put the package logger back the way it was after the test."""
    logger = logging.getLogger(LOGGER_NAME)
    saved_level, saved_handlers, saved_propagate = logger.level, list(logger.handlers), logger.propagate
    yield logger
    for handler in logger.handlers:
        if handler not in saved_handlers:
            handler.close()
    logger.setLevel(saved_level)
    logger.handlers[:] = saved_handlers
    logger.propagate = saved_propagate
