"""
NAS Gallery – self-hosted photo browser API (FastAPI + SQLite)

Quick start
-----------
1) python -m venv .venv && source .venv/bin/activate
2) pip install -e .
3) IMAGE_ROOT=/mnt/nas/photos BASIC_PASS_HASH=plain:secret python scanner.py
4) IMAGE_ROOT=/mnt/nas/photos BASIC_PASS_HASH=plain:secret python app.py 8000

Notes
-----
• The image index lives in ./data/meta.db, thumbnails under ./.cache/thumbs/.
• Thumbnails are rendered on first request and cached; corrupt sources get a
  1x1 placeholder which is logged to ./data/placeholders.log.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, FastAPI, Request

from auth import require_basic_auth
from cache_store import CacheStore
from codec import OUTPUT_EXT, PillowCodec
from config import Settings, get_settings
from database import MetadataStore, create_db_engine, init_db
from diagnostics import PlaceholderLog
from generation_lock import GenerationLock
from routes import (
    get_image,
    get_image_tags,
    list_images,
    list_tags,
    put_image_tags,
    raw_image,
    thumbnail,
)
from thumbnails import ThumbnailService
from utils import setup_logging
from validation import ValidationPolicy

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: MetadataStore
    cache: CacheStore
    lock: GenerationLock
    codec: PillowCodec
    thumbnails: ThumbnailService


def build_services(settings: Settings) -> Services:
    """Construct the process-wide collaborators once."""
    engine = create_db_engine(settings.database_path)
    init_db(engine)
    store = MetadataStore(engine)

    cache = CacheStore(settings.cache_directory, ext=OUTPUT_EXT)
    cache.remove_stale_temp_files()
    lock = GenerationLock(
        settings.cache_directory / ".locks",
        cache,
        max_wait=settings.lock_max_wait,
        poll_interval=settings.lock_poll_interval,
    )
    codec = PillowCodec()
    thumbnails = ThumbnailService(
        store=store,
        cache=cache,
        lock=lock,
        codec=codec,
        source_root=settings.image_root,
        policy=ValidationPolicy(
            target_width=settings.thumbnail_width,
            min_output_bytes=settings.min_output_bytes,
            tiny_source_pixels=settings.tiny_source_pixels,
        ),
        quality=settings.thumbnail_quality,
        placeholder_log=PlaceholderLog(settings.placeholder_log_path),
    )
    return Services(settings, store, cache, lock, codec, thumbnails)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="NAS Gallery", dependencies=[Depends(require_basic_auth)])
    app.state.services = build_services(settings)

    @app.middleware("http")
    async def log_thumb_responses(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/thumb/"):
            logger.info(
                "[thumb] status=%s len=%s type=%s gen=%s url=%s",
                response.status_code,
                response.headers.get("content-length"),
                response.headers.get("content-type"),
                response.headers.get("x-thumb-gen"),
                request.url.path,
            )
        return response

    # Routes
    app.get("/api/images")(list_images)
    app.get("/api/images/{image_id}")(get_image)
    app.get("/api/images/{image_id}/tags")(get_image_tags)
    app.put("/api/images/{image_id}/tags")(put_image_tags)
    app.get("/api/tags")(list_tags)
    app.get("/api/raw/{image_id}")(raw_image)
    app.get("/api/thumb/{image_id}")(thumbnail)

    logger.info(
        "NAS Gallery ready root=%s cache=%s width=%d",
        settings.image_root,
        settings.cache_directory,
        settings.thumbnail_width,
    )
    return app


if __name__ == "__main__":
    # Allow `python app.py 8000`
    port = int(sys.argv[1]) if len(sys.argv) > 1 else 8000
    print(f"→ Open http://localhost:{port}")
    import uvicorn

    uvicorn.run("app:create_app", factory=True, host="0.0.0.0", port=port)
