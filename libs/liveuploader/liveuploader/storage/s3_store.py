"""S3-compatible storage driver (AWS S3, MinIO, GCS interoperability)."""

from __future__ import annotations

import builtins
import io
import logging
from typing import Any, BinaryIO

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from liveuploader.error_codes import ErrorCode
from liveuploader.exceptions import TransientStorageError
from liveuploader.storage.base import (
    FileInfo,
    FileProperties,
    PageInfo,
    ReadResult,
    SaveResult,
    StorageDriver,
    StorageSession,
    content_type_for,
    run_with_timeout,
)
from liveuploader.storage.s3_pagination import iter_list_objects_v2

logger = logging.getLogger(__name__)

GCS_ENDPOINT = "https://storage.googleapis.com"


class S3Session(StorageSession):
    def __init__(self, driver: "S3Driver", base_key: str) -> None:
        super().__init__(base_key)
        self.driver = driver

    def _uri(self, key: str) -> str:
        return f"{self.driver.scheme}://{self.driver.bucket}/{key}"

    async def save(
        self,
        name: str,
        data: BinaryIO,
        properties: FileProperties | None = None,
        timeout: float | None = None,
    ) -> SaveResult:
        client = self.driver.ensure_client(timeout)
        key = self.object_key(name)
        props = properties or FileProperties()

        def _put() -> dict[str, Any]:
            body = data.read()
            kwargs: dict[str, Any] = {
                "Bucket": self.driver.bucket,
                "Key": key,
                "Body": body,
                "ContentType": props.content_type or content_type_for(key),
            }
            if props.cache_control:
                kwargs["CacheControl"] = props.cache_control
            if props.metadata:
                kwargs["Metadata"] = dict(props.metadata)
            return dict(client.put_object(**kwargs))

        try:
            resp = await run_with_timeout(self._uri(key), _put, timeout)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStorageError(self._uri(key), f"put_object failed: {exc}") from exc

        headers = dict((resp.get("ResponseMetadata") or {}).get("HTTPHeaders") or {})
        return SaveResult(url=self.driver.object_url(key), headers={str(k): str(v) for k, v in headers.items()})

    async def read(self, name: str = "") -> ReadResult:
        client = self.driver.ensure_client()
        key = self.object_key(name)

        def _get() -> dict[str, Any]:
            resp = dict(client.get_object(Bucket=self.driver.bucket, Key=key))
            resp["Body"] = bytes(resp["Body"].read())
            return resp

        try:
            resp = await run_with_timeout(self._uri(key), _get, None)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStorageError(
                self._uri(key), f"get_object failed: {exc}", error_code=ErrorCode.STORAGE_READ_FAILED
            ) from exc
        body = resp["Body"]
        return ReadResult(
            name=key,
            body=io.BytesIO(body),
            size=int(resp.get("ContentLength") or len(body)),
            etag=str(resp.get("ETag") or ""),
            metadata={str(k): str(v) for k, v in (resp.get("Metadata") or {}).items()},
        )

    async def list(self, prefix: str = "", delimiter: str = "/") -> PageInfo:
        client = self.driver.ensure_client()
        full_prefix = self.object_key(prefix) if prefix else self.base_key
        if full_prefix and not full_prefix.endswith("/"):
            full_prefix += "/"

        def _list() -> tuple[builtins.list[FileInfo], builtins.list[str]]:
            files: builtins.list[FileInfo] = []
            dirs: builtins.list[str] = []
            kwargs: dict[str, Any] = {"Prefix": full_prefix}
            if delimiter:
                kwargs["Delimiter"] = delimiter
            for resp in iter_list_objects_v2(client, bucket=self.driver.bucket, **kwargs):
                for obj in resp.get("Contents") or []:
                    key = str(obj.get("Key") or "")
                    if not key:
                        continue
                    files.append(
                        FileInfo(
                            name=key,
                            size=int(obj.get("Size") or 0),
                            etag=str(obj.get("ETag") or ""),
                            last_modified=obj.get("LastModified"),
                        )
                    )
                for p in resp.get("CommonPrefixes") or []:
                    dirs.append(str(p.get("Prefix") or ""))
            return files, dirs

        try:
            files, dirs = await run_with_timeout(self._uri(full_prefix), _list, None)
        except (ClientError, BotoCoreError) as exc:
            raise TransientStorageError(
                self._uri(full_prefix),
                f"list_objects_v2 failed: {exc}",
                error_code=ErrorCode.STORAGE_READ_FAILED,
            ) from exc
        return PageInfo(files=files, directories=dirs)


class S3Driver(StorageDriver):
    description = "S3 storage driver (AWS, S3-compatible endpoints and GCS interoperability)."
    uri_schemes = ("s3", "s3+http", "s3+https", "gs")

    def __init__(
        self,
        *,
        bucket: str,
        key_prefix: str,
        access_key: str,
        secret_key: str,
        endpoint: str | None = None,
        region: str | None = None,
        scheme: str = "s3",
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.key_prefix = key_prefix.lstrip("/")
        self.access_key = access_key
        self.secret_key = secret_key
        self.endpoint = endpoint.rstrip("/") if endpoint else None
        self.region = region
        self.scheme = scheme
        # Injected clients are used as-is for every timeout.
        self._injected = client
        self._clients: dict[float | None, Any] = {}

    def ensure_client(self, timeout: float | None = None) -> Any:
        """boto3 client whose socket timeouts match the attempt's `timeout`.

        botocore aborts the request itself once `timeout` passes, so a write
        abandoned by the caller does not complete later.
        """
        if self._injected is not None:
            return self._injected
        key = float(timeout) if timeout and timeout > 0 else None
        client = self._clients.get(key)
        if client is not None:
            return client

        import boto3

        config_kwargs: dict[str, Any] = {
            "s3": {"addressing_style": "path"},
            # Retries are driven by the resilience layer.
            "retries": {"max_attempts": 1},
        }
        if key is not None:
            config_kwargs["connect_timeout"] = key
            config_kwargs["read_timeout"] = key
        client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            config=Config(**config_kwargs),
        )
        self._clients[key] = client
        return client

    def object_url(self, key: str) -> str:
        if self.endpoint:
            return f"{self.endpoint}/{self.bucket}/{key}"
        region = f".{self.region}" if self.region else ""
        return f"https://{self.bucket}.s3{region}.amazonaws.com/{key}"

    def new_session(self, path: str = "") -> StorageSession:
        key = f"{self.key_prefix}/{path}".strip("/") if path else self.key_prefix
        return S3Session(self, key)
