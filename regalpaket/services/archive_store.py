# FILE: regalpaket/services/archive_store.py
"""
Archive store: random-access, transactional storage of named byte blobs
inside one ZIP container file.

Containers are never modified in place. ``replace_entries`` writes the
complete new archive to a temp file beside the target and commits it with
``os.replace``; readers see either the old or the new file, never a mix.
"""
import logging
import os
import shutil
import tempfile
import time
import zipfile
import zlib
from pathlib import Path
from typing import Callable, Collection, Dict, Iterator, List, Mapping, Optional, Set, Union

from regalpaket.errors import (
    ArchiveIOError, ContainerNotFoundError, EntryNotFoundError, MalformedError
)
from regalpaket.services.path_locks import PathLockRegistry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# precommit(sizes, read) may raise to abort a write before anything is committed
PrecommitHook = Callable[[Mapping[str, int], Callable[[str], bytes]], None]

TEMP_SUFFIX = ".tmp"
_COPY_CHUNK = 1024 * 1024


class ArchiveHandle:
    """Open container with an in-memory index of its entries"""

    def __init__(self, path: Path, zf: zipfile.ZipFile):
        self.path = path
        self._zf = zf
        self._index: Dict[str, zipfile.ZipInfo] = {
            info.filename: info for info in zf.infolist() if not info.is_dir()
        }

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self._zf.close()

    def list_entries(self) -> Set[str]:
        return set(self._index)

    def entry_sizes(self) -> Dict[str, int]:
        return {name: info.file_size for name, info in self._index.items()}

    def has_entry(self, name: str) -> bool:
        return name in self._index

    def read_entry(self, name: str) -> bytes:
        info = self._index.get(name)
        if info is None:
            raise EntryNotFoundError(f"Entry {name} not found in {self.path.name}")
        try:
            return self._zf.read(info)
        except (zipfile.BadZipFile, zlib.error) as e:
            raise MalformedError(f"Entry {name} in {self.path.name} is corrupt: {e}") from e

    def iter_infos(self) -> Iterator[zipfile.ZipInfo]:
        return iter(self._index.values())

    def open_entry(self, info: zipfile.ZipInfo):
        return self._zf.open(info)


class ArchiveStore:
    """Store for container archives"""

    def __init__(
        self,
        locks: PathLockRegistry,
        lock_timeout: float = 10.0,
        compress_level: int = 5
    ):
        self.locks = locks
        self.lock_timeout = lock_timeout
        self.compress_level = compress_level

    # ==================== Read ====================

    def open(self, path: PathLike) -> ArchiveHandle:
        """Open a container and index its entries (contents are read lazily)"""
        path = Path(path)
        if not path.is_file():
            raise ContainerNotFoundError(f"Container {path.name} not found")
        try:
            zf = zipfile.ZipFile(path, "r")
        except zipfile.BadZipFile as e:
            raise MalformedError(f"{path.name} is not a valid container archive") from e
        except FileNotFoundError as e:
            raise ContainerNotFoundError(f"Container {path.name} not found") from e
        except OSError as e:
            raise ArchiveIOError(f"Cannot open {path.name}: {e}") from e
        return ArchiveHandle(path, zf)

    def list_entries(self, path: PathLike) -> Set[str]:
        with self.open(path) as handle:
            return handle.list_entries()

    def read_entry(self, path: PathLike, name: str) -> bytes:
        with self.open(path) as handle:
            return handle.read_entry(name)

    # ==================== Write ====================

    def replace_entries(
        self,
        path: PathLike,
        upserts: Mapping[str, bytes],
        deletes: Collection[str] = (),
        precommit: Optional[PrecommitHook] = None
    ):
        """
        Replace a subset of entries, all-or-nothing.

        Entries not named in ``upserts`` or ``deletes`` pass through
        unchanged. If ``path`` does not exist yet the container is created
        from ``upserts`` alone. The target is only touched by the final
        rename, so any failure before it leaves the old file as it was.

        Raises:
            ArchiveBusyError: Write lock not acquired in time
            ArchiveIOError: Storage failure; target unchanged
        """
        path = Path(path)
        overlap = set(upserts) & set(deletes)
        if overlap:
            raise ValueError(f"Entries both upserted and deleted: {sorted(overlap)}")

        with self.locks.hold(path, self.lock_timeout):
            source = self.open(path) if path.exists() else None
            try:
                self._rewrite(path, source, upserts, set(deletes), precommit)
            finally:
                if source is not None:
                    source.close()

    def _rewrite(
        self,
        path: Path,
        source: Optional[ArchiveHandle],
        upserts: Mapping[str, bytes],
        deletes: Set[str],
        precommit: Optional[PrecommitHook]
    ):
        passthrough: List[zipfile.ZipInfo] = []
        if source is not None:
            passthrough = [
                info for info in source.iter_infos()
                if info.filename not in upserts and info.filename not in deletes
            ]

        if precommit is not None:
            sizes = {info.filename: info.file_size for info in passthrough}
            sizes.update({name: len(data) for name, data in upserts.items()})

            def read(name: str) -> bytes:
                if name in upserts:
                    return upserts[name]
                if source is None or name in deletes:
                    raise EntryNotFoundError(f"Entry {name} not found")
                return source.read_entry(name)

            precommit(sizes, read)

        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{path.name}.", suffix=TEMP_SUFFIX, dir=str(path.parent)
            )
        except OSError as e:
            raise ArchiveIOError(f"Cannot create temp file for {path.name}: {e}") from e
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w+b") as f:
                with zipfile.ZipFile(
                    f, "w",
                    compression=zipfile.ZIP_DEFLATED,
                    compresslevel=self.compress_level
                ) as zf:
                    for info in passthrough:
                        self._copy_entry(source, info, zf)
                    for name, data in upserts.items():
                        zf.writestr(name, data)
                f.flush()
                os.fsync(f.fileno())

            # Commit point
            os.replace(tmp_path, path)
        except (zipfile.BadZipFile, zlib.error) as e:
            _discard(tmp_path)
            raise MalformedError(f"Existing entries of {path.name} are corrupt: {e}") from e
        except OSError as e:
            _discard(tmp_path)
            raise ArchiveIOError(f"Failed to write {path.name}: {e}") from e
        except BaseException:
            _discard(tmp_path)
            raise

        _sync_directory(path.parent)
        logger.info(
            f"Committed {path.name}: {len(upserts)} upserted, "
            f"{len(deletes)} deleted, {len(passthrough)} unchanged"
        )

    @staticmethod
    def _copy_entry(source: ArchiveHandle, info: zipfile.ZipInfo, zf: zipfile.ZipFile):
        target = zipfile.ZipInfo(info.filename, date_time=info.date_time)
        target.compress_type = info.compress_type
        target.external_attr = info.external_attr
        target.file_size = info.file_size
        with source.open_entry(info) as src, zf.open(target, "w") as dst:
            shutil.copyfileobj(src, dst, _COPY_CHUNK)
        logger.debug(f"Copied entry {info.filename} ({info.file_size} bytes)")

    # ==================== Maintenance ====================

    def sweep_stale_temp_files(self, directory: PathLike, max_age_seconds: float) -> int:
        """Remove temp files orphaned by an interrupted write"""
        directory = Path(directory)
        if not directory.is_dir():
            return 0

        removed = 0
        cutoff = time.time() - max_age_seconds
        for candidate in directory.glob(f".*{TEMP_SUFFIX}"):
            try:
                if candidate.is_file() and candidate.stat().st_mtime < cutoff:
                    candidate.unlink()
                    removed += 1
                    logger.info(f"Removed stale temp file {candidate.name}")
            except FileNotFoundError:
                continue
        return removed


def _discard(tmp_path: Path):
    try:
        tmp_path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove temp file {tmp_path}: {e}")


def _sync_directory(directory: Path):
    """Flush the rename to disk where the platform allows it"""
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        fd = os.open(str(directory), os.O_RDONLY | os.O_DIRECTORY)
    except OSError as e:
        logger.warning(f"Could not open {directory} to sync: {e}")
        return
    try:
        os.fsync(fd)
    except OSError as e:
        logger.warning(f"Could not sync {directory}: {e}")
    finally:
        os.close(fd)
