"""Thumbnail service: cache lookup, locked generation, validation and fallback.

A request walks these steps::

    cache hit ─────────────────────────────────────────────► hit
    miss → lock ─ borrowed ────────────────────────────────► hit
                └ acquired → re-check → resolve source ─ missing ► NotFound
                                          └ probe → transcode → validate
                                              valid ─► publish ► generated
                                              invalid / corrupt ─► publish placeholder ► placeholder

Corrupt sources are absorbed into a cached placeholder. Only ``NotFound``
and ``TransientFailure`` reach the caller.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from cache_store import CacheStore
from codec import PillowCodec, SourceInfo, TranscodeOptions, placeholder_jpeg
from database import MetadataStore
from diagnostics import PlaceholderLog
from errors import CorruptSource, NotFound, TransientFailure
from generation_lock import AcquireOutcome, GenerationLock
from utils import resolve_under_root
from validation import Invalid, ValidationPolicy, validate_thumbnail

logger = logging.getLogger(__name__)


class ResultTag(str, Enum):
    HIT = "hit"
    GENERATED = "generated"
    PLACEHOLDER = "placeholder"
    NOT_FOUND = "not-found"
    FAILED = "failed"


@dataclass(frozen=True)
class ThumbnailResult:
    data: bytes
    tag: ResultTag
    reason: Optional[str] = None


class ThumbnailService:
    """Serves thumbnails by image id, generating them at most once per id."""

    def __init__(
        self,
        store: MetadataStore,
        cache: CacheStore,
        lock: GenerationLock,
        codec: PillowCodec,
        source_root: Path,
        policy: ValidationPolicy,
        quality: int = 80,
        placeholder_log: Optional[PlaceholderLog] = None,
    ):
        self.store = store
        self.cache = cache
        self.lock = lock
        self.codec = codec
        self.source_root = Path(source_root)
        self.policy = policy
        self.quality = quality
        self.placeholder_log = placeholder_log

    def get_thumbnail(self, image_id: int) -> ThumbnailResult:
        """Return the thumbnail for ``image_id``.

        Raises:
            NotFound: unknown id, deleted record, or source missing on disk.
            TransientFailure: generation failed and nothing was cached.
        """
        if image_id <= 0:
            raise NotFound(f"Invalid image id: {image_id}")

        data = self.cache.get(image_id)
        if data is not None:
            return ThumbnailResult(data, ResultTag.HIT)

        ticket = self.lock.acquire(image_id)
        if ticket.outcome is AcquireOutcome.BORROWED:
            return ThumbnailResult(ticket.data, ResultTag.HIT)
        try:
            # Another generator may have finished between our miss and the lock
            data = self.cache.get(image_id)
            if data is not None:
                return ThumbnailResult(data, ResultTag.HIT)
            return self._generate(image_id)
        except (NotFound, TransientFailure):
            raise
        except Exception as exc:
            logger.exception("Unexpected error generating thumbnail %s", image_id)
            raise TransientFailure(str(exc)) from exc
        finally:
            self.lock.release(ticket)

    def invalidate(self, image_id: int) -> None:
        """Drop the cached thumbnail after its source changed or vanished."""
        self.cache.invalidate(image_id)

    def _resolve_source(self, image_id: int) -> Path:
        record = self.store.lookup_by_id(image_id)
        if record is None or record.deleted:
            raise NotFound(f"No image with id {image_id}")
        try:
            path = resolve_under_root(self.source_root, record.rel_path)
        except ValueError as exc:
            raise NotFound(str(exc)) from exc
        if not path.is_file():
            logger.info("Image %s is indexed but missing on disk: %s", image_id, record.rel_path)
            raise NotFound(f"File missing on disk for image {image_id}")
        return path

    def _generate(self, image_id: int) -> ThumbnailResult:
        path = self._resolve_source(image_id)

        source: Optional[SourceInfo] = None
        try:
            source = self.codec.probe(path)
            options = TranscodeOptions(
                width=self.policy.target_width,
                quality=self.quality,
                flatten_alpha=source.has_alpha,
                convert_colorspace=source.colorspace not in ("RGB", "L")
                or source.has_icc_profile,
            )
            output = self.codec.transcode(path, options)
        except CorruptSource as exc:
            logger.warning("Corrupt source for image %s (%s): %s", image_id, path, exc)
            return self._publish_placeholder(image_id, exc.reason, source)

        result = validate_thumbnail(output, self.policy, source.width, source.height)
        if isinstance(result, Invalid):
            logger.warning(
                "Thumbnail for image %s failed validation (%s): %s",
                image_id,
                result.reason.value,
                result.detail,
            )
            return self._publish_placeholder(image_id, result.reason, source, len(output))

        logger.info(
            "Generated thumbnail %s: %dx%d, %d bytes",
            image_id,
            result.width,
            result.height,
            len(result.data),
        )
        return self._publish(image_id, result.data, ResultTag.GENERATED)

    def _publish_placeholder(
        self,
        image_id: int,
        reason: str,
        source: Optional[SourceInfo],
        output_bytes: int = 0,
    ) -> ThumbnailResult:
        reason = getattr(reason, "value", reason)
        if self.placeholder_log is not None:
            self.placeholder_log.record(image_id, reason, source, output_bytes)
        return self._publish(image_id, placeholder_jpeg(), ResultTag.PLACEHOLDER, reason)

    def _publish(
        self,
        image_id: int,
        data: bytes,
        tag: ResultTag,
        reason: Optional[str] = None,
    ) -> ThumbnailResult:
        try:
            published = self.cache.publish(image_id, data)
        except OSError as exc:
            logger.error("Could not cache thumbnail %s: %s", image_id, exc)
            return ThumbnailResult(data, tag, reason)

        if not published:
            # First writer wins; serve what is actually cached
            existing = self.cache.get(image_id)
            if existing is not None:
                return ThumbnailResult(existing, ResultTag.HIT)
        return ThumbnailResult(data, tag, reason)
