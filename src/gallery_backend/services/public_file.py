from __future__ import annotations

from urllib.parse import quote

from gallery_backend.integrations.storage.object_storage import ObjectStorage
from gallery_backend.settings_store import SettingsStore, is_storage_encryption_enabled

# HEIC originals are served to browsers as a JPEG sibling with the same base name.
HEIC_EXTENSIONS = (".heic", ".heif", ".hif")
JPEG_DERIVATIVE_EXTENSION = ".jpeg"

FILE_PROXY_PREFIX = "/file"


def resolve_original_key_for_photo(storage_key: str | None) -> str | None:
    if not storage_key:
        return None
    lower = storage_key.lower()
    for ext in HEIC_EXTENSIONS:
        if lower.endswith(ext):
            return storage_key[: -len(ext)] + JPEG_DERIVATIVE_EXTENSION
    return storage_key


def heic_candidates_for_jpeg(key: str) -> list[str]:
    if not key.lower().endswith(JPEG_DERIVATIVE_EXTENSION):
        return []
    base = key[: -len(JPEG_DERIVATIVE_EXTENSION)]
    return [f"{base}{ext}" for ext in HEIC_EXTENSIONS]


def collapse_key(key: str) -> str:
    out = key.replace("\\", "/")
    while "//" in out:
        out = out.replace("//", "/")
    return out.lstrip("/")


def to_file_proxy_url(key: str) -> str:
    encoded = "/".join(quote(seg, safe="") for seg in collapse_key(key).split("/") if seg)
    return f"{FILE_PROXY_PREFIX}/{encoded}"


async def resolve_download_url(
    storage: ObjectStorage, settings_store: SettingsStore, key: str | None
) -> str | None:
    """Public URL when objects are plaintext; proxied URL when they may be encrypted."""

    if not key:
        return None
    if await is_storage_encryption_enabled(settings_store):
        return to_file_proxy_url(key)
    return storage.get_public_url(key)
