"""消息处理器：校验作业元数据，串联包解析、阶段执行、终态分类与结果上传，并决定是否 ack。"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import ExitStack
from typing import Protocol

from analysis_worker.application.classifier import log_outcome
from analysis_worker.application.phases import Sandbox, run_phases
from analysis_worker.domain.ecosystems.base import BaseEcosystem
from analysis_worker.domain.ecosystems.registry import EcosystemRegistry
from analysis_worker.domain.errors import ConfigurationError, ResultUploadError, UnsupportedEcosystemError
from analysis_worker.domain.models import Job, JobOutcome, Package
from analysis_worker.infra.logging.context import bind_log_context
from analysis_worker.infra.queue.base import QueueMessage
from analysis_worker.infra.sandbox.podman import VolumeMapping
from analysis_worker.infra.storage.blobstore import BlobStore
from analysis_worker.infra.storage.results import ResultStore
from analysis_worker.infra.storage.staging import stage_package

logger = logging.getLogger(__name__)


class CleanableSandbox(Sandbox, Protocol):
    def clean(self) -> None: ...


class SandboxCreator(Protocol):
    def create(self, image: str, tag: str, volumes: tuple[VolumeMapping, ...] = ()) -> CleanableSandbox: ...


class MessageHandler:
    """单条消息的编排器；作业级硬错误向上抛出且不 ack。"""
    def __init__(
        self,
        *,
        ecosystems: EcosystemRegistry,
        sandbox_factory: SandboxCreator,
        result_store_for: Callable[[str], ResultStore],
        packages_store: BlobStore | None,
        default_results_bucket: str,
        image_tag: str,
    ) -> None:
        self._ecosystems = ecosystems
        self._sandbox_factory = sandbox_factory
        self._result_store_for = result_store_for
        self._packages_store = packages_store
        self._default_results_bucket = default_results_bucket
        self._image_tag = image_tag

    def handle(self, message: QueueMessage) -> JobOutcome | None:
        """处理消息；返回作业结论，被丢弃的消息返回 None。"""
        job = Job.from_metadata(message.metadata)
        with bind_log_context(
            message_id=message.message_id or None,
            ecosystem=job.ecosystem or None,
            package=job.name or None,
            version=job.version or None,
        ):
            ecosystem = self._validate(job)
            if ecosystem is None:
                # 生产者输入有误，直接丢弃，避免反复重投。
                message.ack()
                return None
            outcome = self._process(job, ecosystem)
            message.ack()
            return outcome

    def _validate(self, job: Job) -> BaseEcosystem | None:
        if not job.name:
            logger.warning("name is empty", extra={"event": "job.dropped.name_empty"})
            return None
        if not job.ecosystem:
            logger.warning(
                "ecosystem is empty",
                extra={"event": "job.dropped.ecosystem_empty", "payload_preview": {"name": job.name}},
            )
            return None
        try:
            return self._ecosystems.get(job.ecosystem)
        except UnsupportedEcosystemError:
            logger.warning(
                "Unsupported pkg manager",
                extra={
                    "event": "job.dropped.unsupported_ecosystem",
                    "payload_preview": {"ecosystem": job.ecosystem, "name": job.name},
                },
            )
            return None

    def _process(self, job: Job, ecosystem: BaseEcosystem) -> JobOutcome:
        results_bucket = job.results_bucket_override or self._default_results_bucket
        logger.info(
            "Got request",
            extra={
                "event": "job.received",
                "payload_preview": {
                    "ecosystem": job.ecosystem,
                    "name": job.name,
                    "version": job.version,
                    "package_path": job.package_path,
                    "results_bucket_override": job.results_bucket_override,
                },
            },
        )

        with ExitStack() as stack:
            volumes: tuple[VolumeMapping, ...] = ()
            local_path: str | None = None
            if job.package_path:
                if self._packages_store is None:
                    raise ConfigurationError("packages bucket not set")
                staged = stack.enter_context(stage_package(self._packages_store, job.package_path))
                volumes = (VolumeMapping(host_path=str(staged.host_path), sandbox_path=staged.sandbox_path),)
                local_path = staged.sandbox_path

            package = self._resolve(ecosystem, job, local_path)

            sandbox = self._sandbox_factory.create(ecosystem.image, self._image_tag, volumes)
            stack.callback(sandbox.clean)

            outcome = run_phases(sandbox, package, ecosystem.phase_list(), ecosystem.command_for)
            log_outcome(job, outcome)

            if results_bucket:
                self._upload(results_bucket, package, outcome)
        return outcome

    def _resolve(self, ecosystem: BaseEcosystem, job: Job, local_path: str | None) -> Package:
        """本地暂存路径 > 显式版本 > 查询 latest。"""
        if local_path:
            return ecosystem.local(job.name, job.version, local_path)
        if job.version:
            return ecosystem.package(job.name, job.version)
        try:
            return ecosystem.latest(job.name)
        except Exception as exc:
            logger.error(
                "Failed to get latest version",
                extra={
                    "event": "job.resolve.failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"ecosystem": job.ecosystem, "name": job.name},
                },
            )
            raise

    def _upload(self, results_bucket: str, package: Package, outcome: JobOutcome) -> None:
        try:
            store = self._result_store_for(results_bucket)
        except Exception as exc:
            raise ResultUploadError(f"failed to open results bucket {results_bucket}: {exc}") from exc
        store.save(package, outcome.result_set)
