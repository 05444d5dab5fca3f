"""包暂存：将包存储中的远端文件复制到本地临时文件，并在作用域结束时删除。"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator

from analysis_worker.domain.errors import StagingError
from analysis_worker.infra.storage.blobstore import BlobStore

logger = logging.getLogger(__name__)

SANDBOX_LOCAL_DIR = "/local"


@dataclass(frozen=True, slots=True)
class StagedPackage:
    """已暂存包文件：宿主机路径与沙箱内挂载路径。"""
    host_path: Path
    sandbox_path: str


def sandbox_path_for(package_path: str) -> str:
    """沙箱内挂载路径固定为 /local/<文件名>。"""
    name = PurePosixPath(package_path).name
    if not name:
        raise StagingError(f"package path has no file name: {package_path!r}")
    return f"{SANDBOX_LOCAL_DIR}/{name}"


@contextmanager
def stage_package(store: BlobStore, package_path: str) -> Iterator[StagedPackage]:
    """下载 package_path 到临时文件；无论正常退出还是异常都删除该文件。"""
    sandbox_path = sandbox_path_for(package_path)
    fd, temp_name = tempfile.mkstemp(prefix="package-analysis-")
    host_path = Path(temp_name)
    try:
        try:
            with os.fdopen(fd, "wb") as handle:
                size = store.download_to(package_path, handle)
        except Exception as exc:
            raise StagingError(f"failed to stage {package_path} from {store.locator}: {exc}") from exc
        logger.info(
            "package staged",
            extra={
                "event": "job.package.staged",
                "op": "stage",
                "payload_preview": {"package_path": package_path, "size_bytes": size, "sandbox_path": sandbox_path},
            },
        )
        yield StagedPackage(host_path=host_path, sandbox_path=sandbox_path)
    finally:
        host_path.unlink(missing_ok=True)
