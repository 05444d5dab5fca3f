"""阶段执行器：按生态声明的顺序逐个执行分析阶段，首个非成功阶段后停止。"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Protocol

from analysis_worker.domain.enums import AnalysisStatus
from analysis_worker.domain.models import JobOutcome, Package, PhaseResult, ResultSet
from analysis_worker.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

# 没有任何阶段执行时的默认终态。
DEFAULT_FINAL_STATUS = AnalysisStatus.completed


class Sandbox(Protocol):
    def run(self, command: list[str]) -> PhaseResult: ...


def initial_outcome() -> JobOutcome:
    return JobOutcome(final_status=DEFAULT_FINAL_STATUS, last_phase="", result_set=ResultSet())


def record_phase(outcome: JobOutcome, phase: str, result: PhaseResult) -> JobOutcome:
    """将一个阶段结果折叠进作业结论，返回新对象。"""
    return JobOutcome(
        final_status=result.status,
        last_phase=phase,
        result_set=outcome.result_set.with_result(phase, result),
    )


def run_phases(
    sandbox: Sandbox,
    package: Package,
    phases: Sequence[str],
    command_for: Callable[[Package, str], list[str]],
) -> JobOutcome:
    """依次执行阶段；SandboxError 等基础设施异常直接向上传播，不伪造结果。"""
    outcome = initial_outcome()
    for phase in phases:
        with bind_log_context(phase=phase):
            command = command_for(package, phase)
            logger.debug(
                "phase started",
                extra={"event": "job.phase.started", "op": phase, "payload_preview": {"command": command}},
            )
            try:
                result = sandbox.run(command)
            except Exception as exc:
                logger.error(
                    "Analysis run failed",
                    extra={
                        "event": "job.phase.failed",
                        "op": phase,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise
            outcome = record_phase(outcome, phase, result)
        if result.status != AnalysisStatus.completed:
            break
    return outcome
