from __future__ import annotations

from fastapi import APIRouter, Depends

from gallery_backend.deps import Viewer, require_admin
from gallery_backend.schemas.system_settings import SettingsBatchRequest, SettingsBatchResponse
from gallery_backend.services import settings_service
from gallery_backend.settings_store import SettingsStore, get_settings_store

router = APIRouter(prefix="/system/settings", tags=["system"])


@router.put("/batch", response_model=SettingsBatchResponse, response_model_exclude_none=True)
async def update_settings_batch(
    payload: SettingsBatchRequest,
    viewer: Viewer = Depends(require_admin),
    store: SettingsStore = Depends(get_settings_store),
) -> SettingsBatchResponse:
    _ = viewer
    return await settings_service.apply_settings_batch(
        store=store, updates=payload.updates, updated_by="admin"
    )
