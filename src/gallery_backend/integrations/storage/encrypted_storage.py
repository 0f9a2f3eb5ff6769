from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from typing import Any

from gallery_backend.settings_store import SettingsStore, read_encryption_settings

from .encryption import decrypt_payload, encrypt_payload, is_encrypted_payload
from .errors import StorageConfigError
from .object_storage import (
    ObjectStorage,
    SignedUrlStorage,
    StorageObject,
    collect_stream,
    supports_signed_urls,
)

logger = logging.getLogger(__name__)

ENCRYPTED_CONTENT_TYPE = "application/octet-stream"


class EncryptedObjectStorage:
    """Encrypts on write and decrypts on read around any backend.

    Policy comes from the settings store on every call. Objects written while
    encryption was off stay readable after it is turned on, since only payloads
    carrying the magic header are decrypted.
    """

    def __init__(self, inner: ObjectStorage, settings_store: SettingsStore) -> None:
        self.inner = inner
        self._settings_store = settings_store

    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject:
        enc = await read_encryption_settings(self._settings_store)
        if not enc.encrypt_on_write:
            return await self.inner.create(key, data, content_type)
        if enc.key is None:
            raise StorageConfigError("storage encryption is enabled but encryption key is not set")

        if is_encrypted_payload(data):
            payload = data
        else:
            payload = encrypt_payload(data, enc.key)
        # The caller's content type no longer describes the stored bytes.
        return await self.inner.create(key, payload, ENCRYPTED_CONTENT_TYPE)

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject:
        # Ciphertext needs the whole plaintext; buffer, then take the create() path.
        _ = content_length
        data = await collect_stream(stream)
        return await self.create(key, data, content_type)

    async def get(self, key: str) -> bytes | None:
        payload = await self.inner.get(key)
        if payload is None:
            return None
        if not is_encrypted_payload(payload):
            return payload

        enc = await read_encryption_settings(self._settings_store)
        if enc.key is None:
            raise StorageConfigError("encrypted object found but encryption key is not set")
        return decrypt_payload(payload, enc.key)

    async def delete(self, key: str) -> None:
        await self.inner.delete(key)

    async def get_file_meta(self, key: str) -> StorageObject | None:
        return await self.inner.get_file_meta(key)

    async def list_all(self) -> list[StorageObject]:
        return await self.inner.list_all()

    async def list_images(self) -> list[StorageObject]:
        return await self.inner.list_images()

    def get_public_url(self, key: str) -> str:
        return self.inner.get_public_url(key)


class SignedEncryptedObjectStorage(EncryptedObjectStorage):
    """Variant for backends that can sign URLs."""

    def __init__(self, inner: SignedUrlStorage, settings_store: SettingsStore) -> None:
        super().__init__(inner, settings_store)  # type: ignore[arg-type]
        self._signer = inner

    async def get_signed_url(
        self,
        key: str,
        expires_in: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        return await self._signer.get_signed_url(key, expires_in, options)


def wrap_with_encryption(
    inner: ObjectStorage, settings_store: SettingsStore
) -> EncryptedObjectStorage:
    if supports_signed_urls(inner):
        logger.debug("wrapping %s with signed URL support", type(inner).__name__)
        return SignedEncryptedObjectStorage(inner, settings_store)  # type: ignore[arg-type]
    return EncryptedObjectStorage(inner, settings_store)
