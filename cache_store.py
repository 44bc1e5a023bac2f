"""On-disk thumbnail cache with atomic, first-writer-wins publishing."""
import errno
import logging
import os
import threading
import time
from pathlib import Path
from typing import Optional

from validation import has_jpeg_markers

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


class CacheStore:
    """Directory of ``<id>.<ext>`` files.

    A reader never sees a partial file: entries are written under a
    temporary name and then linked into place, and an existing entry is
    never overwritten.
    """

    def __init__(self, directory: Path, ext: str = "jpg"):
        self.directory = Path(directory)
        self.ext = ext
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, image_id: int) -> Path:
        return self.directory / f"{image_id}.{self.ext}"

    def _temp_path(self, final: Path) -> Path:
        suffix = f"{os.getpid()}.{threading.get_ident()}.{time.time_ns()}"
        return final.with_name(f".{final.name}.{suffix}{TEMP_SUFFIX}")

    def exists(self, image_id: int) -> bool:
        return self.path_for(image_id).is_file()

    def get(self, image_id: int) -> Optional[bytes]:
        """Return the cached bytes, or None when absent or unusable.

        Empty or structurally broken entries are deleted so the next
        request regenerates them.
        """
        path = self.path_for(image_id)
        try:
            if path.stat().st_size == 0:
                logger.warning("Removing zero-length cache entry %s", path.name)
                path.unlink(missing_ok=True)
                return None
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.error("Failed to read cache entry %s: %s", path, exc)
            return None

        if not has_jpeg_markers(data):
            logger.warning("Removing malformed cache entry %s (%d bytes)", path.name, len(data))
            self._discard(path)
            return None
        return data

    def publish(self, image_id: int, data: bytes) -> bool:
        """Atomically publish ``data`` for ``image_id``.

        Returns False without touching the existing entry when another
        writer already published one.
        """
        final = self.path_for(image_id)
        tmp = self._temp_path(final)
        try:
            with open(tmp, "xb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            return self._link_into_place(tmp, final)
        finally:
            tmp.unlink(missing_ok=True)

    def _link_into_place(self, tmp: Path, final: Path) -> bool:
        try:
            os.link(tmp, final)
        except FileExistsError:
            logger.debug("Cache entry %s already published, discarding ours", final.name)
            return False
        except OSError as exc:
            if exc.errno not in (errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.EXDEV):
                raise
            # No hard links on this filesystem (some SMB/FAT mounts)
            if final.exists():
                return False
            os.rename(tmp, final)
        return True

    def invalidate(self, image_id: int) -> None:
        """Remove the entry for ``image_id`` if there is one."""
        path = self.path_for(image_id)
        path.unlink(missing_ok=True)
        logger.debug("Invalidated cache entry %s", path.name)

    def clear(self) -> int:
        """Remove every entry. Returns how many were removed."""
        removed = 0
        for path in self.directory.glob(f"*.{self.ext}"):
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            removed += 1
        logger.info("Cleared %d cache entries from %s", removed, self.directory)
        return removed

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.error("Failed to remove cache entry %s: %s", path, exc)

    def remove_stale_temp_files(self, max_age: float = 3600.0) -> int:
        """Delete temp files older than ``max_age`` seconds left by crashed writers."""
        cutoff = time.time() - max_age
        removed = 0
        for tmp in self.directory.glob(f".*{TEMP_SUFFIX}"):
            try:
                if tmp.stat().st_mtime < cutoff:
                    tmp.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
        if removed:
            logger.info("Removed %d stale temporary cache files", removed)
        return removed
