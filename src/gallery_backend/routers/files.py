"""Byte-range file serving for stored objects."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header
from starlette.responses import Response

from gallery_backend.deps import Viewer, get_viewer
from gallery_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from gallery_backend.services import file_service
from gallery_backend.services.file_service import FileVisibility, get_file_visibility

router = APIRouter(tags=["files"])


@router.get("/file/{key:path}")
async def get_file(
    key: str,
    range_header: str | None = Header(default=None, alias="Range"),
    viewer: Viewer = Depends(get_viewer),
    storage: ObjectStorage = Depends(get_object_storage),
    visibility: FileVisibility = Depends(get_file_visibility),
) -> Response:
    return await file_service.serve_file(
        raw_key=key,
        storage=storage,
        visibility=visibility,
        authenticated=viewer.authenticated,
        range_header=range_header,
    )
