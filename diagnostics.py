"""Append-only log of placeholder events for offline triage of bad sources."""
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from codec import SourceInfo

logger = logging.getLogger(__name__)


class PlaceholderLog:
    """One tab-separated line per placeholder: time, id, reason, WxH, source bytes, output bytes."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(
        self,
        image_id: int,
        reason: str,
        source: Optional[SourceInfo] = None,
        output_bytes: int = 0,
    ) -> None:
        dims = f"{source.width}x{source.height}" if source else "?x?"
        source_bytes = source.byte_size if source else 0
        line = "\t".join(
            [
                datetime.now(timezone.utc).isoformat(timespec="seconds"),
                str(image_id),
                reason,
                dims,
                str(source_bytes),
                str(output_bytes),
            ]
        )
        try:
            with self._lock, self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            logger.error("Could not append to placeholder log %s: %s", self.path, exc)
