"""podman 沙箱适配器：在隔离容器中执行单个分析阶段命令并映射为阶段结果。"""

from __future__ import annotations

import logging
import subprocess
import time
import uuid
from dataclasses import dataclass

from analysis_worker.domain.enums import AnalysisStatus
from analysis_worker.domain.errors import SandboxError
from analysis_worker.domain.models import PhaseResult

logger = logging.getLogger(__name__)

# podman 自身失败、命令不可执行、命令不存在。
_LAUNCH_FAILURE_CODES = {125, 126, 127}


@dataclass(frozen=True, slots=True)
class VolumeMapping:
    """宿主机文件到沙箱路径的只读挂载。"""
    host_path: str
    sandbox_path: str


def _tail(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return f"...(truncated){text[-max_chars:]}"


def status_for_exit_code(exit_code: int) -> AnalysisStatus:
    if exit_code == 0:
        return AnalysisStatus.completed
    if exit_code in _LAUNCH_FAILURE_CODES:
        return AnalysisStatus.error_other
    return AnalysisStatus.error_analysis


class PodmanSandbox:
    """单个作业独占的沙箱实例；clean() 必须在作业结束时调用。"""
    def __init__(
        self,
        *,
        image: str,
        tag: str,
        volumes: tuple[VolumeMapping, ...] = (),
        podman_bin: str = "podman",
        runtime: str = "",
        timeout_seconds: int = 900,
        output_max_chars: int = 64 * 1024,
    ) -> None:
        self._image_ref = f"{image}:{tag}" if tag else image
        self._volumes = volumes
        self._podman_bin = podman_bin
        self._runtime = runtime
        self._timeout_seconds = timeout_seconds
        self._output_max_chars = output_max_chars
        self._containers: list[str] = []

    @property
    def image_ref(self) -> str:
        return self._image_ref

    def _run_args(self, container_name: str, command: list[str]) -> list[str]:
        args = [self._podman_bin, "run", "--rm", "--name", container_name]
        if self._runtime:
            args.extend(["--runtime", self._runtime])
        for volume in self._volumes:
            args.extend(["-v", f"{volume.host_path}:{volume.sandbox_path}:ro"])
        args.append(self._image_ref)
        args.extend(command)
        return args

    def run(self, command: list[str]) -> PhaseResult:
        """执行命令并返回阶段结果；podman 无法启动时抛出 SandboxError。"""
        container_name = f"package-analysis-{uuid.uuid4().hex[:12]}"
        self._containers.append(container_name)
        started = time.perf_counter()
        try:
            completed = subprocess.run(
                self._run_args(container_name, command),
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self._timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.warning(
                "sandbox command timed out",
                extra={
                    "event": "sandbox.run.timeout",
                    "external_service": "podman",
                    "op": "run",
                    "duration_ms": duration_ms,
                    "payload_preview": {"command": command, "timeout_seconds": self._timeout_seconds},
                },
            )
            self._remove(container_name)
            return PhaseResult(
                status=AnalysisStatus.error_timeout,
                output={
                    "exit_code": None,
                    "duration_ms": duration_ms,
                    "stdout": _tail(_as_text(exc.stdout), self._output_max_chars),
                    "stderr": _tail(_as_text(exc.stderr), self._output_max_chars),
                },
            )
        except OSError as exc:
            raise SandboxError(f"failed to launch {self._podman_bin}: {exc}") from exc

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        status = status_for_exit_code(completed.returncode)
        logger.info(
            "sandbox command finished",
            extra={
                "event": "sandbox.run.finished",
                "external_service": "podman",
                "op": "run",
                "duration_ms": duration_ms,
                "payload_preview": {"command": command, "exit_code": completed.returncode, "status": status.value},
            },
        )
        return PhaseResult(
            status=status,
            output={
                "exit_code": completed.returncode,
                "duration_ms": duration_ms,
                "stdout": _tail(completed.stdout or "", self._output_max_chars),
                "stderr": _tail(completed.stderr or "", self._output_max_chars),
            },
        )

    def _remove(self, container_name: str) -> None:
        try:
            subprocess.run(
                [self._podman_bin, "rm", "--force", "--ignore", container_name],
                capture_output=True,
                timeout=60,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning(
                "sandbox container removal failed",
                extra={
                    "event": "sandbox.clean.failed",
                    "external_service": "podman",
                    "op": "rm",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"container": container_name},
                },
            )

    def clean(self) -> None:
        """强制移除本实例启动过的全部容器。"""
        containers, self._containers = self._containers, []
        for container_name in containers:
            self._remove(container_name)


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


class SandboxFactory:
    """按作业创建沙箱实例，持有进程级的 podman 配置。"""
    def __init__(
        self,
        *,
        podman_bin: str = "podman",
        runtime: str = "",
        timeout_seconds: int = 900,
        output_max_chars: int = 64 * 1024,
    ) -> None:
        self._podman_bin = podman_bin
        self._runtime = runtime
        self._timeout_seconds = timeout_seconds
        self._output_max_chars = output_max_chars

    def create(self, image: str, tag: str, volumes: tuple[VolumeMapping, ...] = ()) -> PodmanSandbox:
        return PodmanSandbox(
            image=image,
            tag=tag,
            volumes=volumes,
            podman_bin=self._podman_bin,
            runtime=self._runtime,
            timeout_seconds=self._timeout_seconds,
            output_max_chars=self._output_max_chars,
        )
