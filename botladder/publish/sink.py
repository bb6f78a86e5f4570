"""
Publisher Sinks

Where rendered documents go. A sink hands out one writer per stream and
replaces the previous document of that stream once the writer is closed
without error.
"""

import io
import logging
import os
import tempfile
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Iterator, Protocol, TextIO, runtime_checkable

from ..core.errors import PublishError

logger = logging.getLogger(__name__)


@runtime_checkable
class Publisher(Protocol):
    """Protocol for publish sinks."""

    def open_writer(self, stream_name: str) -> AbstractContextManager[TextIO]:
        """
        Open a writer for a stream.

        Used as a context manager; the document becomes visible only when
        the block exits normally.
        """
        ...


class DirectorySink:
    """Writes each stream to `<directory>/<stream>.json`, replacing it atomically."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, stream_name: str) -> Path:
        return self.directory / f"{stream_name}.json"

    @contextmanager
    def open_writer(self, stream_name: str) -> Iterator[TextIO]:
        target = self.path_for(stream_name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{stream_name}.", suffix=".tmp"
            )
        except OSError as e:
            raise PublishError(f"Cannot open {target} for writing: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yield f
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except OSError as e:
            _discard(tmp_name)
            raise PublishError(f"Writing {target} failed: {e}") from e
        except BaseException:
            _discard(tmp_name)
            raise

        logger.info(f"Published {target}")


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class MemorySink:
    """Keeps the last complete document of each stream in memory."""

    def __init__(self):
        self.documents: dict[str, str] = {}
        self.writes = 0

    @contextmanager
    def open_writer(self, stream_name: str) -> Iterator[TextIO]:
        buffer = io.StringIO()
        yield buffer
        self.documents[stream_name] = buffer.getvalue()
        self.writes += 1
