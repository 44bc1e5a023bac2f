"""Per-id generation lock backed by exclusive-create token files.

Token files live next to the cache so every process sharing the cache
directory also shares the locks. A holder that crashes leaves its token
behind; waiters reclaim it once it is older than the wait limit.
"""
import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from cache_store import CacheStore

logger = logging.getLogger(__name__)


class AcquireOutcome(str, Enum):
    ACQUIRED = "acquired"
    BORROWED = "borrowed"  # another holder published while we waited
    RECLAIMED = "reclaimed"  # stale token taken over
    UNGUARDED = "unguarded"  # lock medium failed, proceeding without it


@dataclass
class LockTicket:
    image_id: int
    outcome: AcquireOutcome
    token: Optional[str] = None
    data: Optional[bytes] = None

    @property
    def holds_lock(self) -> bool:
        return self.token is not None


class GenerationLock:
    """Keyed mutual exclusion for thumbnail generation."""

    def __init__(
        self,
        lock_dir: Path,
        cache: CacheStore,
        max_wait: float = 10.0,
        poll_interval: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.lock_dir = Path(lock_dir)
        self.cache = cache
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self.lock_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, image_id: int) -> Path:
        return self.lock_dir / f"{image_id}.lock"

    @staticmethod
    def _new_token() -> str:
        return f"{os.getpid()}:{threading.get_ident()}:{time.time_ns()}"

    def _try_create(self, path: Path, token: str) -> bool:
        try:
            fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        with os.fdopen(fd, "w") as f:
            f.write(token)
        return True

    def _is_stale(self, path: Path, max_wait: float) -> bool:
        try:
            age = time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return False
        return age > max_wait

    def _reclaim(self, path: Path, token: str) -> None:
        tmp = path.with_name(f"{path.name}.{os.getpid()}.{time.time_ns()}.tmp")
        try:
            tmp.write_text(token)
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

    def acquire(self, image_id: int, max_wait: Optional[float] = None) -> LockTicket:
        """Become the generator for ``image_id``, or borrow a finished result.

        Polls while another holder is active. Gives up waiting after
        ``max_wait`` seconds and takes the lock over.
        """
        if max_wait is None:
            max_wait = self.max_wait
        path = self.path_for(image_id)
        token = self._new_token()
        deadline = self._clock() + max_wait

        try:
            while True:
                if self._try_create(path, token):
                    return LockTicket(image_id, AcquireOutcome.ACQUIRED, token)

                data = self.cache.get(image_id)
                if data is not None:
                    logger.debug("Borrowed thumbnail %s from concurrent generator", image_id)
                    return LockTicket(image_id, AcquireOutcome.BORROWED, data=data)

                if self._clock() >= deadline or self._is_stale(path, max_wait):
                    logger.warning(
                        "Reclaiming stale generation lock for %s after %.1fs",
                        image_id,
                        max_wait,
                    )
                    self._reclaim(path, token)
                    return LockTicket(image_id, AcquireOutcome.RECLAIMED, token)

                self._sleep(self.poll_interval)
        except OSError as exc:
            logger.error(
                "Generation lock for %s unavailable, continuing without it: %s",
                image_id,
                exc,
            )
            return LockTicket(image_id, AcquireOutcome.UNGUARDED)

    def release(self, ticket: LockTicket) -> None:
        """Drop the lock if this ticket still owns it."""
        if not ticket.holds_lock:
            return
        path = self.path_for(ticket.image_id)
        # The token is checked only after it has been moved aside; a foreign
        # token is linked back in place
        suffix = f"{os.getpid()}.{threading.get_ident()}.{time.time_ns()}"
        claimed = path.with_name(f"{path.name}.{suffix}.release")
        try:
            os.rename(path, claimed)
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.error("Failed to release generation lock for %s: %s", ticket.image_id, exc)
            return
        try:
            if claimed.read_text() != ticket.token:
                logger.debug("Lock for %s was taken over, leaving it", ticket.image_id)
                os.link(claimed, path)
        except FileExistsError:
            # A newer holder already replaced it
            pass
        except OSError as exc:
            logger.error("Failed to restore generation lock for %s: %s", ticket.image_id, exc)
        finally:
            claimed.unlink(missing_ok=True)
