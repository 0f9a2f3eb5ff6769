"""Serving stored objects over HTTP with single-range support."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Protocol

from fastapi import HTTPException, status
from starlette.responses import Response

from gallery_backend.db import session_scope
from gallery_backend.integrations.storage.object_storage import ObjectStorage
from gallery_backend.repositories import photos_repo
from gallery_backend.services.public_file import collapse_key, heic_candidates_for_jpeg

PRIVATE_CACHE_CONTROL = "private, max-age=0, must-revalidate"
PUBLIC_CACHE_CONTROL = "public, max-age=31536000, immutable"

_CONTENT_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".heic": "image/heic",
    ".heif": "image/heic",
    ".hif": "image/heic",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".json": "application/json",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


class FileVisibility(Protocol):
    async def is_publicly_visible(self, key: str) -> bool: ...


class DbFileVisibility:
    """Anonymous access: the key must belong to a photo outside every hidden album."""

    async def is_publicly_visible(self, key: str) -> bool:
        async with session_scope() as session:
            photo_id = await photos_repo.find_photo_id_by_key(
                session, key=key, storage_key_aliases=heic_candidates_for_jpeg(key)
            )
            if photo_id is None:
                return False
            return not await photos_repo.is_photo_in_hidden_album(session, photo_id=photo_id)


def get_file_visibility() -> FileVisibility:
    return DbFileVisibility()


def normalize_storage_key(raw: str) -> str:
    # ``raw`` is the already-decoded path parameter; keys may contain a literal "%XX".
    key = collapse_key(raw)
    if not key or ".." in key:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid key")
    return key


def guess_content_type(key: str) -> str:
    return _CONTENT_TYPES.get(PurePosixPath(key).suffix.lower(), DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def parse_range_header(header: str | None, size: int) -> ByteRange | None:
    """Parse a single ``bytes=start-end`` range; None means serve the full body."""

    if not header:
        return None
    m = _RANGE_RE.match(header.strip())
    if m is None:
        return None
    start = int(m.group(1)) if m.group(1) else 0
    end = int(m.group(2)) if m.group(2) else size - 1
    if start <= end < size:
        return ByteRange(start=start, end=end)
    return None


def build_file_response(
    data: bytes, *, key: str, range_header: str | None, authenticated: bool
) -> Response:
    headers = {
        "Cache-Control": PRIVATE_CACHE_CONTROL if authenticated else PUBLIC_CACHE_CONTROL,
    }
    media_type = guess_content_type(key)
    size = len(data)

    byte_range = parse_range_header(range_header, size)
    if byte_range is not None:
        headers["Accept-Ranges"] = "bytes"
        headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{size}"
        # Response computes Content-Length from the sliced body.
        return Response(
            content=data[byte_range.start : byte_range.end + 1],
            status_code=status.HTTP_206_PARTIAL_CONTENT,
            media_type=media_type,
            headers=headers,
        )

    return Response(content=data, media_type=media_type, headers=headers)


async def serve_file(
    *,
    raw_key: str,
    storage: ObjectStorage,
    visibility: FileVisibility,
    authenticated: bool,
    range_header: str | None,
) -> Response:
    key = normalize_storage_key(raw_key)

    # 404 rather than 403 so anonymous callers cannot probe for hidden keys.
    if not authenticated and not await visibility.is_publicly_visible(key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    data = await storage.get(key)
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    return build_file_response(
        data, key=key, range_header=range_header, authenticated=authenticated
    )
