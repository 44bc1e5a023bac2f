"""FastAPI routes for NAS Gallery."""
import logging
from typing import List as ListType

from fastapi import Depends, HTTPException, Path as PathParam, Query, Request
from fastapi.responses import FileResponse, Response
from pydantic import BaseModel

from codec import OUTPUT_MEDIA_TYPE
from errors import NotFound, TransientFailure
from thumbnails import ResultTag
from utils import resolve_under_root

logger = logging.getLogger(__name__)

PAGE_SIZE_DEFAULT = 50
PAGE_SIZE_MAX = 200
LIST_FIELDS = {"id", "rel_path", "filename", "width", "height"}
MEDIA_TYPES = {"png": "image/png", "webp": "image/webp"}


class TagsBody(BaseModel):
    tags: ListType[str] = []


def get_services(request: Request):
    """Collaborators built once in ``app.create_app``."""
    return request.app.state.services


def _require_image(services, image_id: int):
    img = services.store.get_image(image_id)
    if not img:
        raise HTTPException(404, "Not found")
    return img


def list_images(
    page: int = Query(1, ge=1),
    page_size: int = Query(PAGE_SIZE_DEFAULT, ge=1, alias="pageSize"),
    services=Depends(get_services),
):
    """List indexed images, newest first."""
    page_size = min(PAGE_SIZE_MAX, page_size)
    offset = (page - 1) * page_size
    images = services.store.list_images(page_size, offset)
    return {
        "page": page,
        "pageSize": page_size,
        "items": [img.model_dump(include=LIST_FIELDS) for img in images],
    }


def get_image(image_id: int, services=Depends(get_services)):
    """Full record of one image."""
    return _require_image(services, image_id).model_dump()


def get_image_tags(image_id: int, services=Depends(get_services)):
    _require_image(services, image_id)
    return [
        {"id": t.id, "name": t.name}
        for t in services.store.get_tags_for_image(image_id)
    ]


def put_image_tags(image_id: int, body: TagsBody, services=Depends(get_services)):
    """Replace the tags of an image."""
    _require_image(services, image_id)
    tags = services.store.set_tags_for_image(image_id, body.tags)
    return {"ok": True, "tags": tags}


def list_tags(services=Depends(get_services)):
    """All tags with usage counts."""
    return services.store.list_all_tags()


def raw_image(image_id: int, services=Depends(get_services)):
    """Serve the original source file."""
    img = _require_image(services, image_id)
    try:
        real = resolve_under_root(services.settings.image_root, img.rel_path)
    except ValueError:
        raise HTTPException(400, "Path is outside root")
    if not real.is_file():
        raise HTTPException(404, "File missing on disk")
    return FileResponse(real, media_type=MEDIA_TYPES.get(img.ext.lower(), "image/jpeg"))


def thumbnail(image_id: int = PathParam(..., gt=0), services=Depends(get_services)):
    """Serve the cached thumbnail, generating it on first request."""
    try:
        result = services.thumbnails.get_thumbnail(image_id)
    except NotFound as exc:
        raise HTTPException(
            404, str(exc), headers={"X-Thumb-Gen": ResultTag.NOT_FOUND.value}
        )
    except TransientFailure as exc:
        logger.error("Thumbnail %s failed: %s", image_id, exc)
        raise HTTPException(
            500,
            "Thumbnail generation failed",
            headers={"X-Thumb-Gen": ResultTag.FAILED.value},
        )

    headers = {"X-Thumb-Gen": result.tag.value}
    if result.reason:
        headers["X-Thumb-Reason"] = result.reason
    return Response(content=result.data, media_type=OUTPUT_MEDIA_TYPE, headers=headers)
