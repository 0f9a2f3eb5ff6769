"""OpenList remote file-service backend.

OpenList is not read-after-write consistent: right after a successful PUT the
metadata endpoint may report the file without size or raw URL, or not at all.
Writes therefore poll metadata on a short fixed schedule, and downloads without
a dedicated endpoint retry through the raw URL and the public URL.

Endpoints differ between deployments, so they are configurable; the defaults
match the stock ``/api/fs/*`` API.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from .backoff import VISIBILITY_BACKOFF_MS, Sleep, poll_with_backoff
from .errors import StorageConfigError, StorageProviderError
from .object_storage import StorageObject, filter_images

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openlist"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class OpenListConfig:
    base_url: str
    token: str = ""
    root_path: str = ""
    upload_endpoint: str = "/api/fs/put"
    download_endpoint: str = ""
    meta_endpoint: str = "/api/fs/get"
    list_endpoint: str = "/api/fs/list"
    delete_endpoint: str = "/api/fs/remove"
    path_field: str = "path"
    cdn_url: str = ""
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RemoteMeta:
    obj: StorageObject
    raw_url: str | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.raw_url) or self.obj.size is not None


def _parse_timestamp(value: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _pick_int(node: dict[str, Any], key: str) -> int | None:
    v = node.get(key)
    # bool is an int subclass; reject it.
    if isinstance(v, int) and not isinstance(v, bool):
        return v
    return None


def _pick_str(node: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        v = node.get(key)
        if isinstance(v, str) and v:
            return v
    return None


def _pick_modified(node: dict[str, Any]) -> datetime | None:
    v = _pick_str(node, "modified", "lastModified", "mtime")
    return _parse_timestamp(v) if v else None


def _parse_meta(data: object, rooted_key: str) -> RemoteMeta:
    if not isinstance(data, dict):
        return RemoteMeta(obj=StorageObject(key=rooted_key))
    node = data.get("data")
    if not isinstance(node, dict):
        node = data
    return RemoteMeta(
        obj=StorageObject(
            key=rooted_key,
            size=_pick_int(node, "size"),
            last_modified=_pick_modified(node),
            etag=_pick_str(node, "etag"),
        ),
        raw_url=_pick_str(node, "raw_url"),
    )


def _safe_json(resp: httpx.Response) -> object:
    try:
        return resp.json()
    except ValueError:
        return None


def _encode_url_path(key: str) -> str:
    return "/".join(quote(seg, safe="") for seg in key.split("/") if seg)


class OpenListObjectStorage:
    def __init__(
        self,
        config: OpenListConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        backoff_ms: tuple[int, ...] = VISIBILITY_BACKOFF_MS,
    ) -> None:
        self.config = config
        self._client = client
        self._sleep = sleep
        self._backoff_ms = backoff_ms
        self._token: str | None = None

    @property
    def _base_url(self) -> str:
        return self.config.base_url.strip().rstrip("/")

    @property
    def _path_field(self) -> str:
        return self.config.path_field or "path"

    def _auth_token(self) -> str:
        if self._token:
            return self._token
        token = self.config.token.strip()
        if not token:
            raise StorageConfigError(
                "OpenList auth requires a token; configure OPENLIST_TOKEN"
            )
        self._token = token
        return token

    def normalized_root(self) -> str:
        return (self.config.root_path or "").strip().strip("/")

    def with_root(self, key: str) -> str:
        root = self.normalized_root()
        trimmed = key.lstrip("/")
        if not root:
            return trimmed
        if trimmed == root or trimmed.startswith(f"{root}/"):
            return trimmed
        return f"{root}/{trimmed}"

    @staticmethod
    def to_absolute_path(key: str) -> str:
        if not key or key == "/":
            return "/"
        return key if key.startswith("/") else f"/{key}"

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        content: bytes | AsyncIterable[bytes] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(
                method, url, headers=headers, json=json, content=content, params=params
            )
        # Scoped client: streamed uploads keep the transport open only for the transfer.
        async with httpx.AsyncClient(timeout=self.config.timeout_seconds) as client:
            return await client.request(
                method, url, headers=headers, json=json, content=content, params=params
            )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        headers: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        content: bytes | AsyncIterable[bytes] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        all_headers = {"Authorization": self._auth_token(), **(headers or {})}
        return await self._send(
            method,
            f"{self._base_url}{endpoint}",
            headers=all_headers,
            json=json,
            content=content,
            params=params,
        )

    async def _fetch_bytes(self, url: str) -> bytes | None:
        try:
            resp = await self._send("GET", url)
        except httpx.HTTPError as e:
            logger.warning("OpenList fetch failed url=%s error=%s", url, e)
            return None
        if not resp.is_success:
            return None
        return resp.content

    def _upload_failed(self, resp: httpx.Response) -> StorageProviderError:
        label = "Request Entity Too Large" if resp.status_code == 413 else "Request Failed"
        logger.error("OpenList upload failed status=%s body=%s", resp.status_code, resp.text)
        return StorageProviderError(
            provider=PROVIDER_NAME,
            status_code=resp.status_code,
            message=f"OpenList upload failed: {resp.status_code} {label}",
            body=resp.text,
        )

    async def _fetch_meta(self, key: str, *, refresh: bool) -> RemoteMeta | None:
        rooted_key = self.with_root(key)
        endpoint = (
            self.config.meta_endpoint or self.config.download_endpoint or "/api/fs/get"
        )
        payload: dict[str, Any] = {
            self._path_field: self.to_absolute_path(rooted_key),
            "password": "",
            "page": 1,
            "per_page": 0,
            "refresh": refresh,
        }
        resp = await self._request("POST", endpoint, json=payload)
        if not resp.is_success:
            logger.error(
                "OpenList get file meta failed key=%s status=%s body=%s",
                rooted_key,
                resp.status_code,
                resp.text,
            )
            return None
        return _parse_meta(_safe_json(resp), rooted_key)

    async def _wait_for_meta(self, rooted_key: str) -> RemoteMeta | None:
        async def _attempt(index: int) -> RemoteMeta | None:
            # Refresh after the first miss to bypass cached "not found" results.
            return await self._fetch_meta(rooted_key, refresh=index > 0)

        return await poll_with_backoff(
            self._backoff_ms, _attempt, lambda meta: meta.is_complete, sleep=self._sleep
        )

    async def _download_with_backoff(self, key: str) -> bytes | None:
        rooted_key = self.with_root(key)

        async def _attempt(index: int) -> bytes | None:
            meta = await self._fetch_meta(rooted_key, refresh=index > 0)
            if meta is not None and meta.raw_url:
                data = await self._fetch_bytes(meta.raw_url)
                if data is not None:
                    return data
            public_url = self.get_public_url(rooted_key)
            if public_url:
                return await self._fetch_bytes(public_url)
            return None

        return await poll_with_backoff(
            self._backoff_ms, _attempt, lambda _data: True, sleep=self._sleep
        )

    def _log_uploaded(self, key: str, rooted_key: str, absolute_key: str) -> None:
        logger.info("OpenList uploaded object: %s", absolute_key)
        logger.debug(
            "OpenList upload details original_key=%s rooted_key=%s root_path=%s",
            key,
            rooted_key,
            self.normalized_root(),
        )

    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject:
        rooted_key = self.with_root(key)
        absolute_key = self.to_absolute_path(rooted_key)
        resp = await self._request(
            "PUT",
            self.config.upload_endpoint or "/api/fs/put",
            headers={
                "Content-Type": content_type or _DEFAULT_CONTENT_TYPE,
                "Content-Length": str(len(data)),
                "File-Path": quote(absolute_key, safe=""),
            },
            content=data,
        )
        if not resp.is_success:
            raise self._upload_failed(resp)

        self._log_uploaded(key, rooted_key, absolute_key)
        meta = await self._wait_for_meta(rooted_key)
        if meta is not None:
            return meta.obj
        return StorageObject(
            key=rooted_key,
            size=len(data),
            last_modified=datetime.now(timezone.utc),
        )

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject:
        rooted_key = self.with_root(key)
        absolute_key = self.to_absolute_path(rooted_key)
        headers = {
            "Content-Type": content_type or _DEFAULT_CONTENT_TYPE,
            "File-Path": quote(absolute_key, safe=""),
        }
        if content_length is not None:
            headers["Content-Length"] = str(content_length)

        resp = await self._request(
            "PUT",
            self.config.upload_endpoint or "/api/fs/put",
            headers=headers,
            content=stream,
        )
        if not resp.is_success:
            raise self._upload_failed(resp)

        self._log_uploaded(key, rooted_key, absolute_key)
        meta = await self._wait_for_meta(rooted_key)
        if meta is not None:
            return meta.obj
        return StorageObject(
            key=rooted_key,
            size=content_length,
            last_modified=datetime.now(timezone.utc),
        )

    async def delete(self, key: str) -> None:
        rooted_key = self.with_root(key).lstrip("/")
        directory, sep, name = rooted_key.rpartition("/")
        if not sep:
            directory = self.normalized_root()
        body = {"dir": self.to_absolute_path(directory), "names": [name]}

        resp = await self._request(
            "POST", self.config.delete_endpoint or "/api/fs/remove", json=body
        )
        if not resp.is_success:
            logger.error(
                "OpenList delete failed status=%s body=%s", resp.status_code, resp.text
            )
            raise StorageProviderError(
                provider=PROVIDER_NAME,
                status_code=resp.status_code,
                message=f"OpenList delete failed: {resp.status_code}",
                body=resp.text,
            )
        logger.info("OpenList deleted object: %s", key)

    async def get(self, key: str) -> bytes | None:
        endpoint = self.config.download_endpoint
        if not endpoint:
            return await self._download_with_backoff(key)

        rooted_key = self.with_root(key)
        resp = await self._request("GET", endpoint, params={self._path_field: rooted_key})
        if not resp.is_success:
            return None
        return resp.content

    def get_public_url(self, key: str) -> str:
        rooted_key = self.with_root(key)
        base = self.config.cdn_url.strip() or (f"{self._base_url}/d" if self._base_url else "")
        if not base:
            return ""
        return f"{base.rstrip('/')}/{_encode_url_path(rooted_key)}"

    async def get_file_meta(self, key: str) -> StorageObject | None:
        meta = await self._fetch_meta(key, refresh=False)
        return meta.obj if meta is not None else None

    async def list_all(self) -> list[StorageObject]:
        endpoint = self.config.list_endpoint
        if not endpoint:
            return []

        root = self.normalized_root()
        payload: dict[str, Any] = {
            self._path_field: self.to_absolute_path(root),
            "password": "",
            "page": 1,
            "per_page": 0,
            "refresh": False,
        }
        resp = await self._request("POST", endpoint, json=payload)
        if not resp.is_success:
            logger.error("OpenList list failed status=%s body=%s", resp.status_code, resp.text)
            raise StorageProviderError(
                provider=PROVIDER_NAME,
                status_code=resp.status_code,
                message=f"OpenList list failed: {resp.status_code}",
                body=resp.text,
            )

        data = _safe_json(resp)
        node = data.get("data") if isinstance(data, dict) else None
        items = node.get("content") if isinstance(node, dict) else None
        if not isinstance(items, list):
            return []

        out: list[StorageObject] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            path = _pick_str(item, "path")
            name = _pick_str(item, "name")
            if path is None and name is None:
                continue
            key_value = path if path is not None else f"{root}/{name}"
            out.append(
                StorageObject(
                    key=self.with_root(key_value),
                    size=_pick_int(item, "size"),
                    last_modified=_pick_modified(item),
                    etag=_pick_str(item, "etag"),
                )
            )
        return out

    async def list_images(self) -> list[StorageObject]:
        return filter_images(await self.list_all())
