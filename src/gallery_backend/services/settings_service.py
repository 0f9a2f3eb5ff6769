from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, status

from gallery_backend.integrations.storage.encryption import generate_encryption_key
from gallery_backend.schemas.system_settings import (
    SettingsBatchResponse,
    SettingUpdate,
    SettingUpdateError,
)
from gallery_backend.settings_store import (
    ENCRYPTION_ENABLED_KEY,
    ENCRYPTION_KEY_KEY,
    STORAGE_NAMESPACE,
    SettingsStore,
)

logger = logging.getLogger(__name__)

# (namespace, key) -> accepted value type
_SETTING_TYPES: dict[tuple[str, str], type] = {
    (STORAGE_NAMESPACE, ENCRYPTION_ENABLED_KEY): bool,
    (STORAGE_NAMESPACE, ENCRYPTION_KEY_KEY): str,
}


def _is_storage(update: SettingUpdate, key: str) -> bool:
    return update.namespace == STORAGE_NAMESPACE and update.key == key


def _write_order(update: SettingUpdate) -> int:
    # The key must land before the flag, or a concurrent write could see
    # encryption enabled without a key.
    if _is_storage(update, ENCRYPTION_KEY_KEY):
        return 0
    if _is_storage(update, ENCRYPTION_ENABLED_KEY):
        return 1
    return 2


def _validate_value(update: SettingUpdate) -> Any:
    expected = _SETTING_TYPES[(update.namespace, update.key)]
    if not isinstance(update.value, expected):
        raise ValueError(f"expected {expected.__name__}")
    if expected is str:
        return update.value.strip()
    return update.value


async def apply_settings_batch(
    *,
    store: SettingsStore,
    updates: list[SettingUpdate],
    updated_by: str | None = None,
) -> SettingsBatchResponse:
    for u in updates:
        if (u.namespace, u.key) not in _SETTING_TYPES:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"unknown setting {u.namespace}/{u.key}",
            )

    pending = [u.model_copy() for u in updates]
    enabling = any(
        _is_storage(u, ENCRYPTION_ENABLED_KEY) and u.value is True for u in pending
    )
    if enabling:
        key_update = next((u for u in pending if _is_storage(u, ENCRYPTION_KEY_KEY)), None)
        provided = ""
        if key_update is not None and isinstance(key_update.value, str):
            provided = key_update.value.strip()
        existing = await store.get(STORAGE_NAMESPACE, ENCRYPTION_KEY_KEY)
        existing = existing.strip() if isinstance(existing, str) else ""

        if not provided and existing and key_update is not None:
            # A blank key must not wipe the stored one while enabling.
            pending.remove(key_update)
        elif not provided and not existing:
            generated = generate_encryption_key()
            logger.info("generated storage encryption key while enabling encryption")
            if key_update is not None:
                key_update.value = generated
            else:
                pending.append(
                    SettingUpdate(
                        namespace=STORAGE_NAMESPACE, key=ENCRYPTION_KEY_KEY, value=generated
                    )
                )
        pending.sort(key=_write_order)

    updated = 0
    errors: list[SettingUpdateError] = []
    for u in pending:
        try:
            value = _validate_value(u)
            await store.set(u.namespace, u.key, value, updated_by=updated_by)
            updated += 1
        except Exception as e:
            logger.warning(
                "setting update failed namespace=%s key=%s error=%s", u.namespace, u.key, e
            )
            errors.append(SettingUpdateError(namespace=u.namespace, key=u.key, error=str(e)))

    if errors:
        return SettingsBatchResponse(success=False, updated=updated, errors=errors)
    return SettingsBatchResponse(success=True, updated=updated)
