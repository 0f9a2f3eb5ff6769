from __future__ import annotations

from pathlib import Path

import pytest

from gallery_backend.integrations.storage.local_storage import LocalObjectStorage


@pytest.mark.anyio
async def test_local_storage_create_get_delete(tmp_path: Path):
    s = LocalObjectStorage(root_dir=str(tmp_path))

    obj = await s.create("photos/2026/a.jpg", b"jpeg-bytes", "image/jpeg")

    assert obj.key == "photos/2026/a.jpg"
    assert obj.size == len(b"jpeg-bytes")
    assert obj.last_modified is not None and obj.last_modified.tzinfo is not None
    assert (tmp_path / "photos" / "2026" / "a.jpg").read_bytes() == b"jpeg-bytes"
    assert await s.get("photos/2026/a.jpg") == b"jpeg-bytes"

    await s.delete("photos/2026/a.jpg")
    await s.delete("photos/2026/a.jpg")
    assert await s.get("photos/2026/a.jpg") is None
    assert await s.get_file_meta("photos/2026/a.jpg") is None


@pytest.mark.anyio
async def test_local_storage_stream_and_listing(tmp_path: Path):
    s = LocalObjectStorage(root_dir=str(tmp_path))

    async def chunks():
        yield b"part-1 "
        yield b"part-2"

    obj = await s.create_from_stream("videos/v.mov", chunks())
    _ = await s.create("b.png", b"png")
    (tmp_path / "half.jpg.tmp").write_bytes(b"partial")

    assert obj.size == len(b"part-1 part-2")
    assert [o.key for o in await s.list_all()] == ["b.png", "videos/v.mov"]
    assert [o.key for o in await s.list_images()] == ["b.png"]


@pytest.mark.anyio
async def test_local_storage_failed_stream_leaves_no_file(tmp_path: Path):
    s = LocalObjectStorage(root_dir=str(tmp_path))

    async def broken():
        yield b"start"
        raise RuntimeError("client went away")

    with pytest.raises(RuntimeError):
        _ = await s.create_from_stream("a.jpg", broken())

    assert list(tmp_path.iterdir()) == []


@pytest.mark.anyio
@pytest.mark.parametrize("key", ["../escape.jpg", "a/../../b.jpg", "", "/"])
async def test_local_storage_rejects_unsafe_keys(tmp_path: Path, key: str):
    s = LocalObjectStorage(root_dir=str(tmp_path / "root"))
    with pytest.raises(ValueError):
        _ = await s.create(key, b"x")


def test_local_storage_public_url(tmp_path: Path):
    assert LocalObjectStorage(root_dir=str(tmp_path)).get_public_url("a.jpg") == ""
    s = LocalObjectStorage(root_dir=str(tmp_path), public_base_url="https://files.example.com/")
    assert s.get_public_url("/dir/a b.jpg") == "https://files.example.com/dir/a%20b.jpg"
