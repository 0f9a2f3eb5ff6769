from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

import pytest

from gallery_backend.integrations.storage.encrypted_storage import (
    ENCRYPTED_CONTENT_TYPE,
    EncryptedObjectStorage,
    SignedEncryptedObjectStorage,
    wrap_with_encryption,
)
from gallery_backend.integrations.storage.encryption import (
    MAGIC,
    derive_aes256_key,
    encrypt_payload,
    is_encrypted_payload,
)
from gallery_backend.integrations.storage.errors import PayloadIntegrityError, StorageConfigError
from gallery_backend.integrations.storage.object_storage import (
    StorageObject,
    collect_stream,
    filter_images,
    supports_signed_urls,
)
from gallery_backend.settings_store import (
    ENCRYPTION_ENABLED_KEY,
    ENCRYPTION_KEY_KEY,
    STORAGE_NAMESPACE,
    InMemorySettingsStore,
)

RAW_KEY = "my storage passphrase"


class _MemoryStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}
        self.create_calls = 0

    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject:
        self.create_calls += 1
        self.objects[key] = data
        self.content_types[key] = content_type
        return StorageObject(key=key, size=len(data))

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject:
        _ = content_length
        return await self.create(key, await collect_stream(stream), content_type)

    async def get(self, key: str) -> bytes | None:
        return self.objects.get(key)

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    async def get_file_meta(self, key: str) -> StorageObject | None:
        data = self.objects.get(key)
        return StorageObject(key=key, size=len(data)) if data is not None else None

    async def list_all(self) -> list[StorageObject]:
        return [StorageObject(key=k, size=len(v)) for k, v in sorted(self.objects.items())]

    async def list_images(self) -> list[StorageObject]:
        return filter_images(await self.list_all())

    def get_public_url(self, key: str) -> str:
        return f"https://cdn.example.com/{key}"


class _SigningMemoryStorage(_MemoryStorage):
    async def get_signed_url(
        self,
        key: str,
        expires_in: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        _ = options
        return f"https://signed.example.com/{key}?expires={expires_in}"


def _store(*, enabled: bool, key: str | None) -> InMemorySettingsStore:
    values: dict[tuple[str, str], Any] = {(STORAGE_NAMESPACE, ENCRYPTION_ENABLED_KEY): enabled}
    if key is not None:
        values[(STORAGE_NAMESPACE, ENCRYPTION_KEY_KEY)] = key
    return InMemorySettingsStore(values)


async def _chunks(*parts: bytes) -> AsyncIterator[bytes]:
    for p in parts:
        yield p


@pytest.mark.anyio
async def test_disabled_encryption_stores_plaintext():
    inner = _MemoryStorage()
    storage = EncryptedObjectStorage(inner, _store(enabled=False, key=None))

    await storage.create("a.txt", b"hello", "text/plain")

    assert inner.objects["a.txt"] == b"hello"
    assert inner.content_types["a.txt"] == "text/plain"
    assert await storage.get("a.txt") == b"hello"


@pytest.mark.anyio
async def test_enabled_encryption_frames_raw_bytes_and_decrypts_on_read():
    inner = _MemoryStorage()
    storage = EncryptedObjectStorage(inner, _store(enabled=True, key=RAW_KEY))

    await storage.create("a.txt", b"hello", "text/plain")

    raw = inner.objects["a.txt"]
    assert len(raw) >= 34
    assert raw[:6] == MAGIC
    assert b"hello" not in raw
    assert inner.content_types["a.txt"] == ENCRYPTED_CONTENT_TYPE
    assert await storage.get("a.txt") == b"hello"


@pytest.mark.anyio
async def test_enabled_without_key_fails_before_backend_call():
    inner = _MemoryStorage()
    storage = EncryptedObjectStorage(inner, _store(enabled=True, key=None))

    with pytest.raises(StorageConfigError):
        _ = await storage.create("a.txt", b"hello")
    assert inner.create_calls == 0
    assert inner.objects == {}


@pytest.mark.anyio
async def test_already_encrypted_payload_is_stored_unchanged():
    inner = _MemoryStorage()
    storage = EncryptedObjectStorage(inner, _store(enabled=True, key=RAW_KEY))
    framed = encrypt_payload(b"hello", derive_aes256_key(RAW_KEY))

    await storage.create("a.bin", framed)

    assert inner.objects["a.bin"] == framed
    assert await storage.get("a.bin") == b"hello"


@pytest.mark.anyio
async def test_plaintext_history_is_readable_after_enabling():
    inner = _MemoryStorage()
    store = _store(enabled=False, key=None)
    storage = EncryptedObjectStorage(inner, store)
    await storage.create("old.jpg", b"old plaintext")

    await store.set(STORAGE_NAMESPACE, ENCRYPTION_KEY_KEY, RAW_KEY)
    await store.set(STORAGE_NAMESPACE, ENCRYPTION_ENABLED_KEY, True)
    await storage.create("new.jpg", b"new secret")

    assert inner.objects["old.jpg"] == b"old plaintext"
    assert is_encrypted_payload(inner.objects["new.jpg"])
    assert await storage.get("old.jpg") == b"old plaintext"
    assert await storage.get("new.jpg") == b"new secret"

    # Turning encryption off again keeps old ciphertext readable while the key exists.
    await store.set(STORAGE_NAMESPACE, ENCRYPTION_ENABLED_KEY, False)
    await storage.create("later.jpg", b"later")
    assert inner.objects["later.jpg"] == b"later"
    assert await storage.get("new.jpg") == b"new secret"


@pytest.mark.anyio
async def test_reading_encrypted_object_without_key_is_config_error():
    inner = _MemoryStorage()
    inner.objects["a.bin"] = encrypt_payload(b"hello", derive_aes256_key(RAW_KEY))
    storage = EncryptedObjectStorage(inner, _store(enabled=False, key=None))

    with pytest.raises(StorageConfigError):
        _ = await storage.get("a.bin")


@pytest.mark.anyio
async def test_reading_with_wrong_key_is_integrity_error():
    inner = _MemoryStorage()
    inner.objects["a.bin"] = encrypt_payload(b"hello", derive_aes256_key(RAW_KEY))
    storage = EncryptedObjectStorage(inner, _store(enabled=True, key="some other key"))

    with pytest.raises(PayloadIntegrityError):
        _ = await storage.get("a.bin")


@pytest.mark.anyio
async def test_missing_object_returns_none():
    storage = EncryptedObjectStorage(_MemoryStorage(), _store(enabled=True, key=RAW_KEY))
    assert await storage.get("missing.jpg") is None


@pytest.mark.anyio
async def test_stream_upload_is_encrypted_when_enabled():
    inner = _MemoryStorage()
    storage = EncryptedObjectStorage(inner, _store(enabled=True, key=RAW_KEY))

    await storage.create_from_stream(
        "v.mov", _chunks(b"chunk-1,", b"chunk-2"), 15, "video/quicktime"
    )

    assert is_encrypted_payload(inner.objects["v.mov"])
    assert await storage.get("v.mov") == b"chunk-1,chunk-2"


@pytest.mark.anyio
async def test_forwards_listing_meta_delete_and_public_url():
    inner = _MemoryStorage()
    inner.objects.update({"a.jpg": b"1", "b.txt": b"22"})
    storage = EncryptedObjectStorage(inner, _store(enabled=False, key=None))

    assert [o.key for o in await storage.list_all()] == ["a.jpg", "b.txt"]
    assert [o.key for o in await storage.list_images()] == ["a.jpg"]
    assert await storage.get_file_meta("b.txt") == StorageObject(key="b.txt", size=2)
    assert storage.get_public_url("a.jpg") == "https://cdn.example.com/a.jpg"

    await storage.delete("a.jpg")
    await storage.delete("a.jpg")
    assert "a.jpg" not in inner.objects


@pytest.mark.anyio
async def test_signed_url_capability_follows_inner_backend():
    store = _store(enabled=False, key=None)

    plain = wrap_with_encryption(_MemoryStorage(), store)
    assert type(plain) is EncryptedObjectStorage
    assert not supports_signed_urls(plain)
    assert not hasattr(plain, "get_signed_url")

    signing = wrap_with_encryption(_SigningMemoryStorage(), store)
    assert isinstance(signing, SignedEncryptedObjectStorage)
    assert supports_signed_urls(signing)
    url = await signing.get_signed_url("a.jpg", 60)
    assert url == "https://signed.example.com/a.jpg?expires=60"
