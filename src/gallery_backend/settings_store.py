"""Dynamic key/value settings consulted by the storage layer.

Values are read on every call; nothing here caches across operations, so
toggling encryption takes effect on the next read or write.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from sqlmodel import select

from gallery_backend.db import session_scope
from gallery_backend.integrations.storage.encryption import derive_aes256_key
from gallery_backend.models import SystemSetting, utc_now

STORAGE_NAMESPACE = "storage"
ENCRYPTION_ENABLED_KEY = "encryption.enabled"
ENCRYPTION_KEY_KEY = "encryption.key"


class SettingsStore(Protocol):
    async def get(self, namespace: str, key: str) -> Any: ...

    async def set(
        self, namespace: str, key: str, value: Any, updated_by: str | None = None
    ) -> None: ...


class InMemorySettingsStore:
    def __init__(self, initial: dict[tuple[str, str], Any] | None = None) -> None:
        self._values: dict[tuple[str, str], Any] = dict(initial or {})

    async def get(self, namespace: str, key: str) -> Any:
        return self._values.get((namespace, key))

    async def set(
        self, namespace: str, key: str, value: Any, updated_by: str | None = None
    ) -> None:
        _ = updated_by
        self._values[(namespace, key)] = value


class DbSettingsStore:
    async def get(self, namespace: str, key: str) -> Any:
        async with session_scope() as session:
            row = (
                await session.exec(
                    select(SystemSetting)
                    .where(SystemSetting.namespace == namespace)
                    .where(SystemSetting.key == key)
                )
            ).first()
        if row is None:
            return None
        return json.loads(row.value_json)

    async def set(
        self, namespace: str, key: str, value: Any, updated_by: str | None = None
    ) -> None:
        value_json = json.dumps(value)
        async with session_scope() as session:
            row = (
                await session.exec(
                    select(SystemSetting)
                    .where(SystemSetting.namespace == namespace)
                    .where(SystemSetting.key == key)
                )
            ).first()
            if row is None:
                row = SystemSetting(namespace=namespace, key=key, value_json=value_json)
            else:
                row.value_json = value_json
                row.updated_at = utc_now()
            row.updated_by = updated_by
            session.add(row)
            await session.commit()


def get_settings_store() -> SettingsStore:
    return DbSettingsStore()


@dataclass(frozen=True)
class EncryptionSettings:
    encrypt_on_write: bool
    key: bytes | None


async def is_storage_encryption_enabled(store: SettingsStore) -> bool:
    return bool(await store.get(STORAGE_NAMESPACE, ENCRYPTION_ENABLED_KEY))


async def read_encryption_settings(store: SettingsStore) -> EncryptionSettings:
    encrypt_on_write = await is_storage_encryption_enabled(store)
    raw_key = await store.get(STORAGE_NAMESPACE, ENCRYPTION_KEY_KEY)
    if not isinstance(raw_key, str) or not raw_key.strip():
        return EncryptionSettings(encrypt_on_write=encrypt_on_write, key=None)
    return EncryptionSettings(encrypt_on_write=encrypt_on_write, key=derive_aes256_key(raw_key))
