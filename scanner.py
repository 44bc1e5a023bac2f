"""Image scanning: keeps the metadata index in sync with the photo tree."""
import argparse
import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from cache_store import CacheStore
from codec import PillowCodec
from database import MetadataStore
from errors import GalleryError

logger = logging.getLogger(__name__)

# Configuration
ALLOWED_EXTS = {".jpg", ".jpeg", ".png", ".webp"}
EXCLUDED_DIRS = {".cache", ".git", "__pycache__", "@eaDir", "#recycle"}


@dataclass
class ScanStats:
    files: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    thumbs: int = 0
    errors: int = 0
    elapsed: float = 0.0


@dataclass
class _Job:
    rel_path: str
    abs_path: Path
    mtime: int
    size: int
    prev_id: Optional[int]
    width: int = 0
    height: int = 0


def iter_image_files(root: Path) -> Iterable[Path]:
    """Iterate through all image files under root, skipping system folders."""

    def on_error(exc: OSError) -> None:
        logger.error("Cannot read directory %s: %s", exc.filename, exc.strerror)

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        dirnames[:] = [d for d in dirnames if d not in EXCLUDED_DIRS]
        for name in filenames:
            if Path(name).suffix.lower() in ALLOWED_EXTS:
                yield Path(dirpath) / name


def _probe(codec: PillowCodec, job: _Job) -> _Job:
    try:
        info = codec.probe(job.abs_path)
        job.width, job.height = info.width, info.height
    except GalleryError as exc:
        logger.warning("Cannot read image metadata for %s: %s", job.rel_path, exc)
    return job


def scan(
    root: Path,
    store: MetadataStore,
    cache: CacheStore,
    codec: Optional[PillowCodec] = None,
    concurrency: int = 4,
    thumbnails=None,
) -> ScanStats:
    """Index every image under root and return scan stats.

    ``thumbnails`` is an optional ``ThumbnailService`` used to pre-render
    thumbnails for new and changed files.
    """
    start = time.monotonic()
    codec = codec or PillowCodec()
    root = root.resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Image root not found: {root}")

    logger.info("Scan started root=%s", root)
    stats = ScanStats()
    existing = store.load_images_map()
    seen: set[str] = set()
    jobs: list[_Job] = []

    for file in iter_image_files(root):
        rel = file.relative_to(root).as_posix()
        try:
            st = file.stat()
        except OSError as exc:
            logger.warning("Cannot stat %s: %s", rel, exc)
            continue
        seen.add(rel)
        stats.files += 1
        mtime = int(st.st_mtime * 1000)
        prev = existing.get(rel)

        # A missing thumbnail also counts as a change
        if (
            prev is not None
            and prev[1] == mtime
            and prev[2] == st.st_size
            and cache.exists(prev[0])
        ):
            stats.skipped += 1
            continue
        jobs.append(_Job(rel, file, mtime, st.st_size, prev[0] if prev else None))

    vanished = [rel for rel in existing if rel not in seen]
    if vanished:
        for image_id in store.mark_deleted(vanished):
            cache.invalidate(image_id)
        stats.deleted = len(vanished)
        logger.info("Marked %d records as deleted", len(vanished))

    changed_ids = []
    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for job in pool.map(lambda j: _probe(codec, j), jobs):
            image_id = store.upsert_image(
                rel_path=job.rel_path,
                filename=job.abs_path.name,
                ext=job.abs_path.suffix[1:].lower(),
                mtime=job.mtime,
                size=job.size,
                width=job.width,
                height=job.height,
            )
            if job.prev_id is None:
                stats.inserted += 1
            else:
                stats.updated += 1
                cache.invalidate(image_id)
            changed_ids.append(image_id)

        if thumbnails is not None:
            for image_id, ok in zip(
                changed_ids, pool.map(lambda i: _warm(thumbnails, i), changed_ids)
            ):
                if ok:
                    stats.thumbs += 1
                else:
                    stats.errors += 1

    store.set_meta("last_scan_finished", datetime.now(timezone.utc).isoformat())
    stats.elapsed = time.monotonic() - start
    logger.info(
        "Scan done in %.1fs files=%d inserted=%d updated=%d skipped=%d deleted=%d thumbs=%d",
        stats.elapsed,
        stats.files,
        stats.inserted,
        stats.updated,
        stats.skipped,
        stats.deleted,
        stats.thumbs,
    )
    return stats


def _warm(thumbnails, image_id: int) -> bool:
    try:
        thumbnails.get_thumbnail(image_id)
    except GalleryError as exc:
        logger.error("Thumbnail generation failed for %s: %s", image_id, exc)
        return False
    return True


def main(argv=None) -> int:
    from app import build_services
    from config import get_settings
    from utils import setup_logging

    parser = argparse.ArgumentParser(description="Index the photo tree")
    parser.add_argument("--root", type=Path, help="Override IMAGE_ROOT")
    parser.add_argument(
        "--no-thumbs", action="store_true", help="Only index, do not render thumbnails"
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    if args.root:
        settings = settings.model_copy(update={"image_root": args.root})
    setup_logging(settings.log_level)

    services = build_services(settings)
    try:
        scan(
            settings.image_root,
            services.store,
            services.cache,
            codec=services.codec,
            concurrency=settings.scan_concurrency,
            thumbnails=None if args.no_thumbs else services.thumbnails,
        )
    except FileNotFoundError as exc:
        logger.error("%s", exc)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
