from __future__ import annotations

import re
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Protocol, runtime_checkable

from gallery_backend.config import settings


@dataclass(frozen=True)
class StorageObject:
    key: str
    size: int | None = None
    last_modified: datetime | None = None
    etag: str | None = None


class ObjectStorage(Protocol):
    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject: ...

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject: ...

    async def get(self, key: str) -> bytes | None: ...

    async def delete(self, key: str) -> None: ...

    async def get_file_meta(self, key: str) -> StorageObject | None: ...

    async def list_all(self) -> list[StorageObject]: ...

    async def list_images(self) -> list[StorageObject]: ...

    def get_public_url(self, key: str) -> str: ...


@runtime_checkable
class SignedUrlStorage(Protocol):
    """Optional capability: temporary direct access without going through ``get``."""

    async def get_signed_url(
        self,
        key: str,
        expires_in: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> str: ...


def supports_signed_urls(storage: object) -> bool:
    return isinstance(storage, SignedUrlStorage)


_IMAGE_KEY_RE = re.compile(r"\.(jpe?g|png|webp|gif|bmp|tiff?|heic|heif)$", re.IGNORECASE)


def is_image_key(key: str) -> bool:
    return _IMAGE_KEY_RE.search(key) is not None


def filter_images(objects: list[StorageObject]) -> list[StorageObject]:
    return [obj for obj in objects if is_image_key(obj.key)]


async def collect_stream(stream: AsyncIterable[bytes]) -> bytes:
    buf = bytearray()
    async for chunk in stream:
        buf.extend(chunk)
    return bytes(buf)


def build_storage_backend() -> ObjectStorage:
    provider = settings.storage_provider.strip().lower()

    if provider == "openlist":
        from .openlist_storage import OpenListConfig, OpenListObjectStorage

        return OpenListObjectStorage(
            OpenListConfig(
                base_url=settings.openlist_base_url,
                token=settings.openlist_token,
                root_path=settings.openlist_root_path,
                upload_endpoint=settings.openlist_upload_endpoint,
                download_endpoint=settings.openlist_download_endpoint,
                meta_endpoint=settings.openlist_meta_endpoint,
                list_endpoint=settings.openlist_list_endpoint,
                delete_endpoint=settings.openlist_delete_endpoint,
                path_field=settings.openlist_path_field,
                cdn_url=settings.openlist_cdn_url,
                timeout_seconds=settings.openlist_request_timeout_seconds,
            )
        )

    if provider == "s3":
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
            public_base_url=settings.s3_public_base_url,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(
        root_dir=settings.storage_local_dir,
        public_base_url=settings.storage_local_public_base_url,
    )


@lru_cache(maxsize=1)
def get_object_storage() -> ObjectStorage:
    # Built once per process; encryption policy is still read per call.
    from gallery_backend.settings_store import get_settings_store

    from .encrypted_storage import wrap_with_encryption

    return wrap_with_encryption(build_storage_backend(), get_settings_store())


def reset_storage_cache() -> None:
    get_object_storage.cache_clear()
