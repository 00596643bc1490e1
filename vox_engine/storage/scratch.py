"""Scratch-file registry shared by concurrent transcription runs.

Tracks temporary audio files by path with a reference count. A file is
removed from disk when its last holder releases it, or by
cleanup_all() at shutdown. All bookkeeping happens under one lock so
runs on different threads or tasks can register and release freely.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from vox_engine.utils.errors import ScratchFileError

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "vox_"


class ScratchRegistry:
    """Reference-counted registry of scratch files.

    Args:
        directory: Directory for files created via create(). Defaults to
            the system temp directory.
    """

    def __init__(self, directory: str | None = None) -> None:
        self.directory = directory
        self._lock = threading.Lock()
        self._refs: dict[str, int] = {}

    def create(self, suffix: str = ".wav") -> str:
        """Create an empty owner-only (0600) file and register it.

        Returns:
            Absolute path to the new file, held once.

        Raises:
            ScratchFileError: If the file cannot be created.
        """
        try:
            fd, path = tempfile.mkstemp(
                suffix=suffix, prefix=SCRATCH_PREFIX, dir=self.directory
            )
            os.close(fd)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise ScratchFileError(f"Failed to create scratch file: {exc}") from exc
        self.register(path)
        return path

    def register(self, path: str) -> None:
        """Start tracking an existing file, or add a reference if tracked."""
        path = os.path.abspath(path)
        with self._lock:
            self._refs[path] = self._refs.get(path, 0) + 1
            logger.debug("Registered scratch file %s (refs=%d)", path, self._refs[path])

    def retain(self, path: str) -> None:
        """Add a reference to a tracked file.

        Raises:
            ScratchFileError: If the path is not tracked.
        """
        path = os.path.abspath(path)
        with self._lock:
            if path not in self._refs:
                raise ScratchFileError("Scratch file is not registered", path=path)
            self._refs[path] += 1

    def release(self, path: str) -> bool:
        """Drop one reference; delete the file when none remain.

        Returns:
            True if the file was removed from the registry.
        """
        path = os.path.abspath(path)
        with self._lock:
            count = self._refs.get(path)
            if count is None:
                logger.debug("Release of untracked scratch file %s ignored", path)
                return False
            if count > 1:
                self._refs[path] = count - 1
                return False
            del self._refs[path]
        _remove(path)
        return True

    def cleanup_all(self) -> int:
        """Delete every tracked file regardless of reference count.

        Returns:
            Number of files removed from the registry.
        """
        with self._lock:
            paths = list(self._refs)
            self._refs.clear()
        for path in paths:
            _remove(path)
        if paths:
            logger.info("Cleaned up %d scratch files", len(paths))
        return len(paths)

    def is_tracked(self, path: str) -> bool:
        with self._lock:
            return os.path.abspath(path) in self._refs

    def ref_count(self, path: str) -> int:
        with self._lock:
            return self._refs.get(os.path.abspath(path), 0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._refs)

    @contextmanager
    def hold(self, path: str | None) -> Iterator[str | None]:
        """Hold a reference to path for the duration of the block.

        A None path is accepted and yields None, for audio without a
        scratch copy.
        """
        if path is None:
            yield None
            return
        self.register(path)
        try:
            yield path
        finally:
            self.release(path)


def _remove(path: str) -> None:
    try:
        os.remove(path)
        logger.debug("Removed scratch file %s", path)
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("Failed to remove scratch file %s", path, exc_info=True)
