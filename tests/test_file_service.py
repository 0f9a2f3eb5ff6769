from __future__ import annotations

from typing import cast

import httpx
import pytest
from fastapi import HTTPException

from gallery_backend.config import settings
from gallery_backend.integrations.storage.errors import StorageProviderError
from gallery_backend.integrations.storage.object_storage import get_object_storage
from gallery_backend.main import app  # pyright: ignore[reportMissingTypeStubs]
from gallery_backend.services.file_service import (
    PRIVATE_CACHE_CONTROL,
    PUBLIC_CACHE_CONTROL,
    ByteRange,
    get_file_visibility,
    guess_content_type,
    normalize_storage_key,
    parse_range_header,
)
from gallery_backend.services.public_file import to_file_proxy_url

DATA = bytes(i % 256 for i in range(1000))


class _FakeStorage:
    def __init__(self, objects: dict[str, bytes], *, fail: bool = False) -> None:
        self.objects = objects
        self.fail = fail
        self.get_calls: list[str] = []

    async def get(self, key: str) -> bytes | None:
        self.get_calls.append(key)
        if self.fail:
            raise StorageProviderError(
                provider="openlist",
                status_code=500,
                message="OpenList download failed: 500",
                body="secret upstream body",
            )
        return self.objects.get(key)


class _FakeVisibility:
    def __init__(self, visible: set[str]) -> None:
        self.visible = visible
        self.checked: list[str] = []

    async def is_publicly_visible(self, key: str) -> bool:
        self.checked.append(key)
        return key in self.visible


def _make_async_client() -> httpx.AsyncClient:
    transport = httpx.ASGITransport(app=app)
    return httpx.AsyncClient(transport=transport, base_url="http://test")


def _admin_headers(**extra: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {settings.admin_api_token}", **extra}


@pytest.fixture
def overrides():
    def _install(storage: _FakeStorage, visibility: _FakeVisibility) -> None:
        app.dependency_overrides[get_object_storage] = lambda: storage
        app.dependency_overrides[get_file_visibility] = lambda: visibility

    yield _install
    app.dependency_overrides.clear()


def test_parse_range_header():
    assert parse_range_header("bytes=100-199", 1000) == ByteRange(start=100, end=199)
    assert parse_range_header("bytes=100-", 1000) == ByteRange(start=100, end=999)
    # An empty start means "from the beginning".
    assert parse_range_header("bytes=-199", 1000) == ByteRange(start=0, end=199)
    assert parse_range_header("bytes=0-0", 1000) == ByteRange(start=0, end=0)
    assert ByteRange(start=100, end=199).length == 100

    assert parse_range_header(None, 1000) is None
    assert parse_range_header("", 1000) is None
    assert parse_range_header("bytes=2000-3000", 1000) is None
    assert parse_range_header("bytes=500-100", 1000) is None
    assert parse_range_header("bytes=0-1000", 1000) is None
    assert parse_range_header("bytes=0-1,5-9", 1000) is None
    assert parse_range_header("items=0-10", 1000) is None
    assert parse_range_header("bytes=0-0", 0) is None


def test_normalize_storage_key():
    # Input is already decoded; literal percent sequences are part of the key.
    assert normalize_storage_key("photos/2026/a%20b.jpg") == "photos/2026/a%20b.jpg"
    assert normalize_storage_key("//photos\\\\a.jpg") == "photos/a.jpg"

    for raw in ["", "/", "../etc/passwd", "photos/../../secret"]:
        with pytest.raises(HTTPException) as excinfo:
            _ = normalize_storage_key(raw)
        assert excinfo.value.status_code == 400


@pytest.mark.anyio
@pytest.mark.parametrize(
    "key", ["photos/a%20b.jpg", "photos/100%.jpg", "photos/my trip/a#1.jpg", "photos/%zz.png"]
)
async def test_proxy_url_serves_keys_with_percent_signs(overrides, key: str):
    storage = _FakeStorage({key: b"stored-bytes"})
    overrides(storage, _FakeVisibility({key}))

    async with _make_async_client() as client:
        r = await client.get(to_file_proxy_url(key))

    assert r.status_code == 200
    assert r.content == b"stored-bytes"
    assert storage.get_calls == [key]


def test_guess_content_type():
    assert guess_content_type("a.JPG") == "image/jpeg"
    assert guess_content_type("clip.mov") == "video/quicktime"
    assert guess_content_type("a.heic") == "image/heic"
    assert guess_content_type("blob") == "application/octet-stream"


@pytest.mark.anyio
async def test_range_request_returns_partial_content(overrides):
    storage = _FakeStorage({"photos/a.jpg": DATA})
    overrides(storage, _FakeVisibility({"photos/a.jpg"}))

    async with _make_async_client() as client:
        r = await client.get("/file/photos/a.jpg", headers={"Range": "bytes=100-199"})

    assert r.status_code == 206
    assert r.content == DATA[100:200]
    assert r.headers["content-range"] == "bytes 100-199/1000"
    assert r.headers["accept-ranges"] == "bytes"
    assert r.headers["content-length"] == "100"
    assert r.headers["content-type"] == "image/jpeg"
    assert r.headers["cache-control"] == PUBLIC_CACHE_CONTROL


@pytest.mark.anyio
async def test_unsatisfiable_range_serves_full_body(overrides):
    overrides(_FakeStorage({"a.jpg": DATA}), _FakeVisibility({"a.jpg"}))

    async with _make_async_client() as client:
        r = await client.get("/file/a.jpg", headers={"Range": "bytes=2000-3000"})

    assert r.status_code == 200
    assert r.content == DATA
    assert "content-range" not in r.headers


@pytest.mark.anyio
async def test_anonymous_request_for_hidden_key_is_not_found(overrides):
    storage = _FakeStorage({"hidden.jpg": DATA})
    visibility = _FakeVisibility(set())
    overrides(storage, visibility)

    async with _make_async_client() as client:
        r = await client.get("/file/hidden.jpg")

    assert r.status_code == 404
    body = cast(dict[str, object], r.json())
    assert body["error"] == "not_found"
    assert visibility.checked == ["hidden.jpg"]
    # The object is never read for callers that cannot see it.
    assert storage.get_calls == []


@pytest.mark.anyio
async def test_admin_reads_hidden_key_with_private_cache(overrides):
    visibility = _FakeVisibility(set())
    overrides(_FakeStorage({"hidden.jpg": b"secret"}), visibility)

    async with _make_async_client() as client:
        r = await client.get("/file/hidden.jpg", headers=_admin_headers())

    assert r.status_code == 200
    assert r.content == b"secret"
    assert r.headers["cache-control"] == PRIVATE_CACHE_CONTROL
    assert visibility.checked == []


@pytest.mark.anyio
async def test_wrong_token_is_treated_as_anonymous(overrides):
    overrides(_FakeStorage({"hidden.jpg": b"secret"}), _FakeVisibility(set()))

    async with _make_async_client() as client:
        r = await client.get("/file/hidden.jpg", headers={"Authorization": "Bearer nope"})

    assert r.status_code == 404


@pytest.mark.anyio
async def test_missing_object_is_not_found(overrides):
    overrides(_FakeStorage({}), _FakeVisibility({"gone.jpg"}))

    async with _make_async_client() as client:
        r = await client.get("/file/gone.jpg")

    assert r.status_code == 404


@pytest.mark.anyio
async def test_traversal_key_is_rejected(overrides):
    storage = _FakeStorage({})
    overrides(storage, _FakeVisibility(set()))

    async with _make_async_client() as client:
        r = await client.get("/file/photos/..%2Fsecret.jpg", headers=_admin_headers())

    assert r.status_code == 400
    assert storage.get_calls == []


@pytest.mark.anyio
async def test_backend_failure_hides_details_from_anonymous_callers(overrides):
    overrides(_FakeStorage({}, fail=True), _FakeVisibility({"a.jpg"}))

    async with _make_async_client() as client:
        anon = await client.get("/file/a.jpg", headers={"X-Request-Id": "req-1"})
        admin = await client.get("/file/a.jpg", headers=_admin_headers())

    assert anon.status_code == 502
    anon_body = cast(dict[str, object], anon.json())
    assert anon_body == {
        "error": "upstream_error",
        "message": "Storage backend error",
        "request_id": "req-1",
    }
    assert "secret upstream body" not in anon.text

    assert admin.status_code == 502
    admin_body = cast(dict[str, object], admin.json())
    assert admin_body["message"] == "OpenList download failed: 500"
    details = cast(dict[str, object], admin_body["details"])
    assert details["provider"] == "openlist"
    assert details["body"] == "secret upstream body"
