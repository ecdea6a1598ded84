# FILE: regalpaket/services/path_locks.py
"""
Per-container write locks

One registry is created at service start and handed to the ArchiveStore.
Locks are keyed by canonical path and dropped once no thread holds or waits
for them.
"""
from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, Union

from regalpaket.errors import ArchiveBusyError

logger = logging.getLogger(__name__)


def canonical_path(path: Union[str, Path]) -> str:
    return os.path.normcase(os.path.realpath(os.fspath(path)))


@dataclass
class _PathLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class PathLockRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._locks: Dict[str, _PathLock] = {}

    @contextmanager
    def hold(self, path: Union[str, Path], timeout: float) -> Iterator[None]:
        """Hold the write lock for ``path``; raises ArchiveBusyError after ``timeout`` seconds"""
        key = canonical_path(path)
        with self._lock:
            entry = self._locks.setdefault(key, _PathLock())
            entry.users += 1

        try:
            if not entry.lock.acquire(timeout=timeout):
                logger.warning(f"Write lock for {key} not acquired within {timeout}s")
                raise ArchiveBusyError(f"Container {Path(key).name} is busy; retry later")
            logger.debug(f"Acquired write lock: {key}")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key]

    def active_paths(self) -> int:
        """Number of paths currently held or awaited"""
        with self._lock:
            return len(self._locks)
