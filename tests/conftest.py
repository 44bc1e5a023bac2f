"""Shared fixtures for NAS Gallery tests."""
from pathlib import Path

import pytest
from PIL import Image as PILImage

from cache_store import CacheStore
from codec import PillowCodec
from database import MetadataStore, create_db_engine, init_db
from diagnostics import PlaceholderLog
from generation_lock import GenerationLock
from models import Image
from thumbnails import ThumbnailService
from validation import ValidationPolicy

TARGET_WIDTH = 320


def write_image(
    path: Path, size=(640, 480), mode: str = "RGB", fmt: str = "JPEG", **save_kw
) -> Path:
    """Write a noisy test image so the encoded output has realistic size."""
    noise = PILImage.effect_noise(size, 60)
    im = PILImage.merge("RGB", (noise, noise.transpose(PILImage.Transpose.FLIP_LEFT_RIGHT), noise))
    if mode == "RGBA":
        im = im.convert("RGBA")
        im.putalpha(128)
    elif mode != "RGB":
        im = im.convert(mode)
    path.parent.mkdir(parents=True, exist_ok=True)
    im.save(path, fmt, **save_kw)
    return path


def truncate_file(path: Path, keep: float = 0.5) -> Path:
    data = path.read_bytes()
    path.write_bytes(data[: int(len(data) * keep)])
    return path


class CountingCodec(PillowCodec):
    """Pillow codec that records how often it is asked to transcode."""

    def __init__(self):
        self.probes = 0
        self.transcodes = 0

    def probe(self, path):
        self.probes += 1
        return super().probe(path)

    def transcode(self, path, options):
        self.transcodes += 1
        return super().transcode(path, options)


@pytest.fixture
def photo_root(tmp_path: Path) -> Path:
    root = tmp_path / "photos"
    root.mkdir()
    return root


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def store(tmp_path: Path) -> MetadataStore:
    engine = create_db_engine(tmp_path / "data" / "meta.db")
    init_db(engine)
    return MetadataStore(engine)


@pytest.fixture
def cache(cache_dir: Path) -> CacheStore:
    return CacheStore(cache_dir)


@pytest.fixture
def lock(cache_dir: Path, cache: CacheStore) -> GenerationLock:
    return GenerationLock(cache_dir / ".locks", cache, max_wait=30.0, poll_interval=0.01)


@pytest.fixture
def codec() -> CountingCodec:
    return CountingCodec()


@pytest.fixture
def placeholder_log(tmp_path: Path) -> PlaceholderLog:
    return PlaceholderLog(tmp_path / "data" / "placeholders.log")


@pytest.fixture
def service(store, cache, lock, codec, photo_root, placeholder_log) -> ThumbnailService:
    return ThumbnailService(
        store=store,
        cache=cache,
        lock=lock,
        codec=codec,
        source_root=photo_root,
        policy=ValidationPolicy(target_width=TARGET_WIDTH),
        placeholder_log=placeholder_log,
    )


@pytest.fixture
def add_image(store: MetadataStore, photo_root: Path):
    """Write a source image and index it; returns its id."""

    def _add(rel_path: str, image_id=None, deleted=False, **image_kw) -> int:
        path = write_image(photo_root / rel_path, **image_kw)
        if image_id is None:
            return store.upsert_image(
                rel_path=rel_path,
                filename=path.name,
                ext=path.suffix[1:],
                mtime=int(path.stat().st_mtime * 1000),
                size=path.stat().st_size,
            )
        with store.session() as s:
            s.add(
                Image(
                    id=image_id,
                    rel_path=rel_path,
                    filename=path.name,
                    ext=path.suffix[1:],
                    size=path.stat().st_size,
                    deleted=deleted,
                )
            )
            s.commit()
        return image_id

    return _add
