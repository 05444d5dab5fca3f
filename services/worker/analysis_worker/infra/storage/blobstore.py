"""对象存储抽象：按定位串打开本地目录或 S3 存储桶。"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Any, BinaryIO
from urllib.parse import parse_qs, unquote, urlsplit

logger = logging.getLogger(__name__)


def normalize_key(key: str) -> str:
    """规范化对象键，拒绝绝对路径与目录穿越。"""
    clean = key.strip().lstrip("/")
    parts = PurePosixPath(clean).parts
    if not parts or any(part in {"..", "."} for part in parts):
        raise ValueError(f"invalid object key: {key!r}")
    return "/".join(parts)


class BlobStore(ABC):
    """对象存储最小接口，供包暂存与结果上传共用。"""
    locator: str

    @abstractmethod
    def download_to(self, key: str, handle: BinaryIO) -> int:
        """将对象内容流式写入已打开的文件句柄，返回字节数。"""

    @abstractmethod
    def write_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        """原子写入对象：要么完整替换，要么保持原内容。"""

    @abstractmethod
    def read_bytes(self, key: str) -> bytes:
        """读取完整对象内容。"""

    def close(self) -> None:
        return None


class FileBlobStore(BlobStore):
    """本地目录实现，主要用于开发环境与测试。"""
    def __init__(self, root: Path) -> None:
        self._root = root
        self.locator = f"file://{root}"

    def _path(self, key: str) -> Path:
        return self._root / normalize_key(key)

    def download_to(self, key: str, handle: BinaryIO) -> int:
        with self._path(key).open("rb") as source:
            before = handle.tell()
            shutil.copyfileobj(source, handle, length=1024 * 1024)
            return handle.tell() - before

    def write_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        target = self._path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        # 先写同目录临时文件再 rename，避免半写文件覆盖已有结果。
        fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise

    def read_bytes(self, key: str) -> bytes:
        return self._path(key).read_bytes()


class S3BlobStore(BlobStore):
    """S3 存储桶实现，支持可选的键前缀。"""
    def __init__(self, bucket: str, prefix: str = "", client: Any | None = None, **client_kwargs: Any) -> None:
        self._bucket = bucket
        self._prefix = prefix.strip("/")
        self._client = client if client is not None else _build_s3_client(**client_kwargs)
        self.locator = f"s3://{bucket}/{self._prefix}" if self._prefix else f"s3://{bucket}"

    def _key(self, key: str) -> str:
        clean = normalize_key(key)
        return f"{self._prefix}/{clean}" if self._prefix else clean

    def download_to(self, key: str, handle: BinaryIO) -> int:
        started = time.perf_counter()
        object_key = self._key(key)
        before = handle.tell()
        self._client.download_fileobj(self._bucket, object_key, handle)
        size = handle.tell() - before
        logger.debug(
            "s3 object downloaded",
            extra={
                "event": "storage.download.succeeded",
                "external_service": "s3",
                "op": "download_fileobj",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"bucket": self._bucket, "key": object_key, "size_bytes": size},
            },
        )
        return size

    def write_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        # 单次 put_object 在 S3 侧是原子替换。
        self._client.put_object(Bucket=self._bucket, Key=self._key(key), Body=data, ContentType=content_type)

    def read_bytes(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=self._key(key))
        return response["Body"].read()

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()


def _build_s3_client(*, region_name: str | None = None, endpoint_url: str | None = None) -> Any:
    try:
        import boto3
    except ModuleNotFoundError as exc:
        raise RuntimeError("boto3 is required for s3:// locators") from exc

    kwargs: dict[str, Any] = {}
    if region_name:
        kwargs["region_name"] = region_name
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client("s3", **kwargs)


def open_blob_store(locator: str, *, region_name: str | None = None, endpoint_url: str | None = None) -> BlobStore:
    """按定位串打开对象存储；支持 file:// 与 s3://。"""
    parts = urlsplit(locator)
    scheme = parts.scheme.lower()
    if scheme == "file":
        root = Path(unquote(parts.netloc + parts.path))
        if not root.is_absolute():
            root = (Path.cwd() / root).resolve()
        return FileBlobStore(root)
    if scheme == "s3":
        if not parts.netloc:
            raise ValueError(f"s3 locator has no bucket: {locator}")
        query = parse_qs(parts.query)
        region = query.get("region", [region_name])[0]
        endpoint = query.get("endpoint", [endpoint_url])[0]
        return S3BlobStore(parts.netloc, prefix=parts.path, region_name=region, endpoint_url=endpoint)
    raise ValueError(f"unsupported blob store locator: {locator}")
