"""
Module Cache for the modlock Download Subsystem

Extracted modules live under `{root}/{escaped path}@{version}/` with three
sibling sidecar files: `.hash` (archive SRI hash), `.url` (source URL) and
`.rev` (full commit hash, when known). A directory only counts as a cache hit
once its `.hash` sidecar is readable.

Writers never populate the final directory in place. Archives are extracted
into a staging directory under `{root}/.tmp/` and renamed onto the key; the
rename is the commit point, so readers never observe a half-extracted tree.
"""

import os
import shutil
import tempfile
import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

import platformdirs

from modlock.constants import (
    APP_NAME,
    CACHE_TMP_DIR_NAME,
    HASH_SIDECAR_SUFFIX,
    REV_SIDECAR_SUFFIX,
    STALE_TMP_MAX_AGE,
    URL_SIDECAR_SUFFIX,
)
from modlock.exceptions import ModlockError, SidecarWriteWarning
from modlock.log_utils import logger
from modlock.utils import escape_path

from .files import _safe_rmtree, atomic_write_text
from .interfaces import CacheEntry

# Per-key [lock, holders] slots shared by every ModuleCache in the process,
# keyed by (root, key). A slot is dropped when its last holder leaves.
_key_locks: Dict[Tuple[str, str], List] = {}
_key_locks_guard = threading.Lock()


def _read_sidecar(file_path: str) -> Optional[str]:
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            value = f.read().strip()
    except (OSError, UnicodeDecodeError):
        return None
    return value or None


class ModuleCache:
    """
    Handle on one cache root.

    Parameters:
        root (Optional[str]): Cache directory. Defaults to the per-user cache directory; created if missing.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = os.path.abspath(root or platformdirs.user_cache_dir(APP_NAME))
        self.tmp_dir = os.path.join(self.root, CACHE_TMP_DIR_NAME)
        try:
            os.makedirs(self.tmp_dir, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create cache directory {self.root}: {e}")
            raise
        self.sweep_stale_tmp()

    @staticmethod
    def key(path: str, version: str) -> str:
        return f"{escape_path(path)}@{version}"

    def entry_dir(self, key: str) -> str:
        return os.path.join(self.root, key)

    def sidecar_path(self, key: str, suffix: str) -> str:
        return self.entry_dir(key) + suffix

    @contextmanager
    def key_lock(self, key: str) -> Iterator[None]:
        """Hold the in-process lock serializing fetches of `key` under this root."""
        lock_key = (self.root, key)
        with _key_locks_guard:
            slot = _key_locks.get(lock_key)
            if slot is None:
                slot = [threading.Lock(), 0]
                _key_locks[lock_key] = slot
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with _key_locks_guard:
                slot[1] -= 1
                if slot[1] == 0:
                    del _key_locks[lock_key]

    def sweep_stale_tmp(self, max_age: float = STALE_TMP_MAX_AGE) -> int:
        """
        Remove downloads and staging directories left in `.tmp/` by interrupted runs.

        Only entries untouched for `max_age` seconds are removed, so work in
        progress in other processes survives.

        Returns:
            int: Number of entries removed.
        """
        cutoff = time.time() - max_age
        removed = 0
        try:
            names = os.listdir(self.tmp_dir)
        except OSError as e:
            logger.debug(f"Could not list {self.tmp_dir}: {e}")
            return 0
        for name in names:
            leftover = os.path.join(self.tmp_dir, name)
            try:
                if os.lstat(leftover).st_mtime >= cutoff:
                    continue
            except OSError:
                continue
            if _safe_rmtree(leftover, self.root):
                removed += 1
        if removed:
            logger.debug(f"Removed {removed} stale temporary entries from {self.tmp_dir}")
        return removed

    def lookup(self, path: str, version: str) -> Optional[CacheEntry]:
        """
        Return the committed entry for a module, or None on a miss.

        A hit requires a non-empty directory at the key and a readable `.hash`
        sidecar. Contents are not re-verified.
        """
        key = self.key(path, version)
        entry_dir = self.entry_dir(key)
        try:
            if not os.path.isdir(entry_dir) or not os.listdir(entry_dir):
                return None
        except OSError:
            return None

        archive_hash = _read_sidecar(self.sidecar_path(key, HASH_SIDECAR_SUFFIX))
        if archive_hash is None:
            return None

        return CacheEntry(
            extracted_dir=entry_dir,
            archive_hash=archive_hash,
            source_url=_read_sidecar(self.sidecar_path(key, URL_SIDECAR_SUFFIX)),
            pinned_revision=_read_sidecar(self.sidecar_path(key, REV_SIDECAR_SUFFIX)),
        )

    def new_temp_file(self, suffix: str = "") -> Tuple[int, str]:
        """Create a private temporary file under the cache root; returns (fd, path)."""
        os.makedirs(self.tmp_dir, exist_ok=True)
        return tempfile.mkstemp(dir=self.tmp_dir, prefix="download-", suffix=suffix)

    def new_staging_dir(self) -> str:
        """Create a private staging directory under the cache root."""
        os.makedirs(self.tmp_dir, exist_ok=True)
        return tempfile.mkdtemp(dir=self.tmp_dir, prefix="staging-")

    def discard(self, path: str) -> None:
        """Remove a temporary file or staging directory, logging on failure."""
        if not _safe_rmtree(path, self.root):
            logger.debug(f"Could not discard temporary path {path}")

    def commit(self, staging_dir: str, key: str) -> Tuple[str, bool]:
        """
        Publish a fully extracted staging directory at `key`.

        Returns:
            Tuple[str, bool]: The final directory and whether this call won. When another writer committed first, the staging directory is discarded and the winner's directory is returned.

        Raises:
            ModlockError: If the rename fails for any reason other than a concurrent commit.
        """
        final_dir = self.entry_dir(key)
        try:
            os.makedirs(os.path.dirname(final_dir), exist_ok=True)
            os.rename(staging_dir, final_dir)
        except OSError as e:
            if os.path.isdir(final_dir):
                logger.debug(f"Another writer committed {key} first; adopting its directory")
                self.discard(staging_dir)
                return final_dir, False
            self.discard(staging_dir)
            raise ModlockError(
                f"Could not commit cache entry {key}", details=str(e)
            ) from e
        return final_dir, True

    def write_sidecars(self, key: str, entry: CacheEntry) -> None:
        """
        Write the `.url`, `.rev` and `.hash` sidecars for an entry.

        `.hash` is written last; its presence marks the entry as a hit, so a reader
        that sees it also sees the provenance sidecars. Best-effort: each
        failure is logged as a SidecarWriteWarning and the remaining sidecars
        are still attempted.
        """
        sidecars = (
            (URL_SIDECAR_SUFFIX, entry.source_url),
            (REV_SIDECAR_SUFFIX, entry.pinned_revision),
            (HASH_SIDECAR_SUFFIX, entry.archive_hash),
        )
        for suffix, value in sidecars:
            if not value:
                continue
            sidecar = self.sidecar_path(key, suffix)
            if not atomic_write_text(sidecar, value):
                warning = SidecarWriteWarning(
                    f"Failed to write cache sidecar {os.path.basename(sidecar)}",
                    path=sidecar,
                    details="the next run will fetch this module again",
                )
                logger.warning(str(warning))

    def clear(self) -> bool:
        """
        Delete the whole cache root.

        Returns:
            bool: True when the root was removed or did not exist.
        """
        if not os.path.exists(self.root):
            return True
        try:
            shutil.rmtree(self.root)
        except OSError as e:
            logger.error(f"Error clearing cache {self.root}: {e}")
            return False
        logger.info(f"Cleared module cache at {self.root}")
        return True
