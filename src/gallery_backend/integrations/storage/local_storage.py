from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from starlette.concurrency import run_in_threadpool

from .object_storage import StorageObject, filter_images

logger = logging.getLogger(__name__)

_TMP_SUFFIX = ".tmp"


def _safe_join(root: Path, key: str) -> Path:
    parts = [p for p in PurePosixPath(key.replace("\\", "/")).parts if p not in {"/", ""}]
    if not parts or any(p in {"..", "."} for p in parts):
        raise ValueError("invalid storage key")
    return root.joinpath(*parts)


def _stat_object(key: str, path: Path) -> StorageObject:
    st = path.stat()
    return StorageObject(
        key=key,
        size=st.st_size,
        last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )


class LocalObjectStorage:
    def __init__(self, *, root_dir: str, public_base_url: str = "") -> None:
        self._root = Path(root_dir)
        self._public_base_url = public_base_url.strip().rstrip("/")

    def resolve_path(self, key: str) -> Path:
        return _safe_join(self._root, key)

    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject:
        _ = content_type
        path = self.resolve_path(key)
        tmp_path = path.with_name(path.name + _TMP_SUFFIX)

        def _write() -> StorageObject:
            path.parent.mkdir(parents=True, exist_ok=True)
            _ = tmp_path.write_bytes(data)
            _ = tmp_path.replace(path)
            return _stat_object(key, path)

        obj = await run_in_threadpool(_write)
        logger.debug("stored local object key=%s size=%s", key, obj.size)
        return obj

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject:
        _ = content_length, content_type
        path = self.resolve_path(key)
        tmp_path = path.with_name(path.name + _TMP_SUFFIX)

        def _open():  # type: ignore[no-untyped-def]
            path.parent.mkdir(parents=True, exist_ok=True)
            return tmp_path.open("wb")

        fh = await run_in_threadpool(_open)
        try:
            async for chunk in stream:
                await run_in_threadpool(fh.write, chunk)
        except Exception:
            fh.close()
            tmp_path.unlink(missing_ok=True)
            raise
        fh.close()

        def _commit() -> StorageObject:
            _ = tmp_path.replace(path)
            return _stat_object(key, path)

        return await run_in_threadpool(_commit)

    async def get(self, key: str) -> bytes | None:
        path = self.resolve_path(key)

        def _read() -> bytes | None:
            try:
                return path.read_bytes()
            except (FileNotFoundError, IsADirectoryError):
                return None

        return await run_in_threadpool(_read)

    async def delete(self, key: str) -> None:
        path = self.resolve_path(key)
        if not path.exists():
            return
        await run_in_threadpool(path.unlink, True)

    async def get_file_meta(self, key: str) -> StorageObject | None:
        path = self.resolve_path(key)

        def _meta() -> StorageObject | None:
            if not path.is_file():
                return None
            return _stat_object(key, path)

        return await run_in_threadpool(_meta)

    async def list_all(self) -> list[StorageObject]:
        def _walk() -> list[StorageObject]:
            if not self._root.is_dir():
                return []
            out: list[StorageObject] = []
            for path in sorted(self._root.rglob("*")):
                if not path.is_file() or path.name.endswith(_TMP_SUFFIX):
                    continue
                key = path.relative_to(self._root).as_posix()
                out.append(_stat_object(key, path))
            return out

        return await run_in_threadpool(_walk)

    async def list_images(self) -> list[StorageObject]:
        return filter_images(await self.list_all())

    def get_public_url(self, key: str) -> str:
        if not self._public_base_url:
            return ""
        return f"{self._public_base_url}/{quote(key.lstrip('/'))}"
