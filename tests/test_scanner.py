"""Tests for the filesystem scanner."""
import os
from pathlib import Path

import pytest

from scanner import iter_image_files, scan
from tests.conftest import write_image


@pytest.fixture
def tree(photo_root: Path) -> Path:
    write_image(photo_root / "2023" / "a.jpg", size=(800, 600))
    write_image(photo_root / "2023" / "b.PNG", size=(300, 200), fmt="PNG")
    write_image(photo_root / "2024" / "deep" / "c.webp", size=(640, 480), fmt="WEBP")
    write_image(photo_root / ".cache" / "ignored.jpg")
    (photo_root / "notes.txt").write_text("not an image")
    return photo_root


def bump_mtime(path: Path, seconds: int = 10) -> None:
    st = path.stat()
    os.utime(path, (st.st_atime, st.st_mtime + seconds))


def test_iter_image_files(tree: Path):
    found = sorted(p.relative_to(tree).as_posix() for p in iter_image_files(tree))
    assert found == ["2023/a.jpg", "2023/b.PNG", "2024/deep/c.webp"]


def test_first_scan_indexes_everything(tree, store, cache):
    stats = scan(tree, store, cache, concurrency=2)

    assert (stats.files, stats.inserted, stats.updated, stats.deleted) == (3, 3, 0, 0)
    records = {img.rel_path: img for img in store.list_images(10, 0)}
    assert set(records) == {"2023/a.jpg", "2023/b.PNG", "2024/deep/c.webp"}
    a = records["2023/a.jpg"]
    assert (a.width, a.height, a.ext) == (800, 600, "jpg")
    assert records["2023/b.PNG"].ext == "png"
    assert store.get_meta("last_scan_finished") is not None


def test_scan_renders_thumbnails_and_then_skips(tree, store, cache, service):
    first = scan(tree, store, cache, concurrency=2, thumbnails=service)
    assert first.thumbs == 3
    for image_id, _, _ in store.load_images_map().values():
        assert cache.get(image_id) is not None

    second = scan(tree, store, cache, concurrency=2, thumbnails=service)
    assert (second.skipped, second.inserted, second.updated, second.thumbs) == (3, 0, 0, 0)


def test_missing_thumbnail_counts_as_change(tree, store, cache):
    scan(tree, store, cache)
    stats = scan(tree, store, cache)
    assert stats.updated == 3
    assert stats.skipped == 0


def test_changed_file_is_updated_and_cache_invalidated(tree, store, cache, service):
    scan(tree, store, cache, thumbnails=service)
    image_id = store.load_images_map()["2023/a.jpg"][0]
    old_thumb = cache.get(image_id)

    write_image(tree / "2023" / "a.jpg", size=(1600, 1200))
    bump_mtime(tree / "2023" / "a.jpg")
    stats = scan(tree, store, cache, thumbnails=service)

    assert stats.updated == 1
    assert stats.skipped == 2
    img = store.get_image(image_id)
    assert (img.width, img.height) == (1600, 1200)
    assert cache.get(image_id) != old_thumb


def test_vanished_file_is_marked_deleted(tree, store, cache, service):
    scan(tree, store, cache, thumbnails=service)
    image_id = store.load_images_map()["2024/deep/c.webp"][0]

    (tree / "2024" / "deep" / "c.webp").unlink()
    stats = scan(tree, store, cache, thumbnails=service)

    assert stats.deleted == 1
    assert store.lookup_by_id(image_id).deleted is True
    assert not cache.exists(image_id)


def test_unreadable_image_is_indexed_without_dimensions(photo_root, store, cache):
    (photo_root / "broken.jpg").write_bytes(b"\xff\xd8 nope")
    stats = scan(photo_root, store, cache)

    assert stats.inserted == 1
    img = store.list_images(1, 0)[0]
    assert (img.width, img.height) == (0, 0)


def test_missing_root(tmp_path, store, cache):
    with pytest.raises(FileNotFoundError):
        scan(tmp_path / "nope", store, cache)
