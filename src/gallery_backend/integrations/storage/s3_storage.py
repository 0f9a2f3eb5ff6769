from __future__ import annotations

import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote, urlsplit

from botocore.config import Config
from botocore.exceptions import ClientError
from starlette.concurrency import run_in_threadpool

from .object_storage import StorageObject, collect_stream, filter_images

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
DEFAULT_SIGNED_URL_EXPIRES_SECONDS = 3600


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    force_path_style: bool
    public_base_url: str


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


def _strip_etag(value: object) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return value.strip('"')


class S3ObjectStorage:
    def __init__(
        self,
        *,
        endpoint_url: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        force_path_style: bool,
        public_base_url: str = "",
    ) -> None:
        self._cfg = S3Config(
            endpoint_url=endpoint_url,
            region=region,
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            force_path_style=force_path_style,
            public_base_url=public_base_url.strip().rstrip("/"),
        )

        import boto3

        addressing_style = "path" if force_path_style else "virtual"
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(s3={"addressing_style": addressing_style}),
        )

    async def create(
        self, key: str, data: bytes, content_type: str | None = None
    ) -> StorageObject:
        def _put() -> dict[str, Any]:
            kwargs: dict[str, object] = {
                "Bucket": self._cfg.bucket,
                "Key": key,
                "Body": data,
            }
            if content_type:
                kwargs["ContentType"] = content_type
            return self._client.put_object(**kwargs) or {}

        resp = await run_in_threadpool(_put)
        logger.info("uploaded s3 object bucket=%s key=%s", self._cfg.bucket, key)
        return StorageObject(
            key=key,
            size=len(data),
            last_modified=datetime.now(timezone.utc),
            etag=_strip_etag(resp.get("ETag")),
        )

    async def create_from_stream(
        self,
        key: str,
        stream: AsyncIterable[bytes],
        content_length: int | None = None,
        content_type: str | None = None,
    ) -> StorageObject:
        # put_object needs a seekable body; buffer the stream.
        _ = content_length
        data = await collect_stream(stream)
        return await self.create(key, data, content_type)

    async def get(self, key: str) -> bytes | None:
        def _get() -> bytes | None:
            try:
                resp = self._client.get_object(Bucket=self._cfg.bucket, Key=key)
            except ClientError as e:
                if _is_not_found(e):
                    return None
                raise
            body = resp.get("Body")
            # StreamingBody.read() is blocking; run in threadpool.
            return body.read() if body is not None else b""

        return await run_in_threadpool(_get)

    async def delete(self, key: str) -> None:
        def _delete() -> None:
            self._client.delete_object(Bucket=self._cfg.bucket, Key=key)

        await run_in_threadpool(_delete)

    async def get_file_meta(self, key: str) -> StorageObject | None:
        def _head() -> StorageObject | None:
            try:
                resp = self._client.head_object(Bucket=self._cfg.bucket, Key=key)
            except ClientError as e:
                if _is_not_found(e):
                    return None
                raise
            size = resp.get("ContentLength")
            modified = resp.get("LastModified")
            return StorageObject(
                key=key,
                size=size if isinstance(size, int) else None,
                last_modified=modified if isinstance(modified, datetime) else None,
                etag=_strip_etag(resp.get("ETag")),
            )

        return await run_in_threadpool(_head)

    async def list_all(self) -> list[StorageObject]:
        def _list() -> list[StorageObject]:
            out: list[StorageObject] = []
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._cfg.bucket):
                for item in page.get("Contents", []) or []:
                    key = item.get("Key")
                    if not isinstance(key, str):
                        continue
                    size = item.get("Size")
                    modified = item.get("LastModified")
                    out.append(
                        StorageObject(
                            key=key,
                            size=size if isinstance(size, int) else None,
                            last_modified=modified if isinstance(modified, datetime) else None,
                            etag=_strip_etag(item.get("ETag")),
                        )
                    )
            return out

        return await run_in_threadpool(_list)

    async def list_images(self) -> list[StorageObject]:
        return filter_images(await self.list_all())

    def get_public_url(self, key: str) -> str:
        encoded = quote(key.lstrip("/"))
        if self._cfg.public_base_url:
            return f"{self._cfg.public_base_url}/{encoded}"
        endpoint = self._cfg.endpoint_url.strip().rstrip("/")
        if not endpoint:
            return ""
        if self._cfg.force_path_style:
            return f"{endpoint}/{self._cfg.bucket}/{encoded}"
        parts = urlsplit(endpoint)
        return f"{parts.scheme}://{self._cfg.bucket}.{parts.netloc}/{encoded}"

    async def get_signed_url(
        self,
        key: str,
        expires_in: int | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Presign a GET, or a PUT when ``options`` carries ``content_type``."""

        opts = options or {}
        expires = int(expires_in or DEFAULT_SIGNED_URL_EXPIRES_SECONDS)
        content_type = opts.get("content_type")

        def _sign() -> str:
            params: dict[str, object] = {"Bucket": self._cfg.bucket, "Key": key}
            if isinstance(content_type, str) and content_type:
                params["ContentType"] = content_type
                return self._client.generate_presigned_url(
                    "put_object", Params=params, ExpiresIn=expires
                )
            return self._client.generate_presigned_url(
                "get_object", Params=params, ExpiresIn=expires
            )

        return await run_in_threadpool(_sign)
