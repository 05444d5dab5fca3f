"""结果存储：按包标识生成确定性路径，序列化并上传阶段结果。"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

from analysis_worker.domain.errors import ResultUploadError
from analysis_worker.domain.models import Package, ResultSet
from analysis_worker.infra.storage.blobstore import BlobStore, normalize_key

logger = logging.getLogger(__name__)

UNVERSIONED_SEGMENT = "_"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _version_segment(version: str) -> str:
    """版本段百分号编码；空版本用 "_"，真实版本 "_" 编码为 "%5F" 以免与之相同。"""
    if not version:
        return UNVERSIONED_SEGMENT
    segment = quote(version, safe="+")
    if segment == UNVERSIONED_SEGMENT:
        return "%5F"
    return segment


def content_path(package: Package) -> str:
    """返回 <ecosystem>/<name>/<version>.json；无版本时版本段为 "_"。"""
    ecosystem, name = package.ecosystem, package.name
    if not ecosystem or ecosystem.strip() != ecosystem or "/" in ecosystem:
        raise ValueError(f"invalid ecosystem for result path: {ecosystem!r}")
    # npm scoped 包名（@scope/pkg）保留为两级目录；空片段会被路径规范化折叠，必须拒绝。
    if not name or name.strip() != name or "" in name.split("/"):
        raise ValueError(f"invalid name for result path: {name!r}")
    return normalize_key(f"{ecosystem}/{name}/{_version_segment(package.version)}.json")


def serialize_results(package: Package, result_set: ResultSet, *, created_at: str | None = None) -> bytes:
    """序列化结果文档，analysis 字段保持阶段执行顺序。"""
    document: dict[str, Any] = {
        "package": package.to_dict(),
        "created_at": created_at or utcnow_iso(),
        "analysis": result_set.to_dict(),
    }
    return (json.dumps(document, ensure_ascii=False, indent=2) + "\n").encode("utf-8")


def deserialize_results(data: bytes) -> ResultSet:
    document = json.loads(data.decode("utf-8"))
    return ResultSet.from_dict(document.get("analysis") or {})


class ResultStore:
    """结果存储，封装路径构造与对象写入。"""
    def __init__(self, store: BlobStore) -> None:
        self._store = store

    @property
    def locator(self) -> str:
        return self._store.locator

    def save(self, package: Package, result_set: ResultSet) -> str:
        """写入结果文档并返回对象键；失败时抛出 ResultUploadError。"""
        started = time.perf_counter()
        key = content_path(package)
        try:
            self._store.write_bytes(key, serialize_results(package, result_set), content_type="application/json")
        except Exception as exc:
            raise ResultUploadError(f"failed to upload results to {self._store.locator}/{key}: {exc}") from exc
        logger.info(
            "results uploaded",
            extra={
                "event": "job.results.uploaded",
                "external_service": "blobstore",
                "op": "write",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"bucket": self._store.locator, "key": key, "phases": result_set.phases()},
            },
        )
        return key

    def load(self, package: Package) -> ResultSet:
        """读取已保存的结果文档，还原有序 ResultSet。"""
        return deserialize_results(self._store.read_bytes(content_path(package)))
