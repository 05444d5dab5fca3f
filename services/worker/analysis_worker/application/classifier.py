"""作业终态分类：把 JobOutcome 映射为一条用于运维指标的日志信号。"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from analysis_worker.domain.enums import AnalysisStatus
from analysis_worker.domain.models import Job, JobOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutcomeSignal:
    level: int
    message: str
    event: str


_SIGNALS: dict[AnalysisStatus, OutcomeSignal] = {
    AnalysisStatus.completed: OutcomeSignal(logging.INFO, "Analysis completed successfully", "job.analysis.completed"),
    AnalysisStatus.error_analysis: OutcomeSignal(
        logging.WARNING, "Analysis error - analysis", "job.analysis.error_analysis"
    ),
    AnalysisStatus.error_timeout: OutcomeSignal(
        logging.WARNING, "Analysis error - timeout", "job.analysis.error_timeout"
    ),
    AnalysisStatus.error_other: OutcomeSignal(logging.WARNING, "Analysis error - other", "job.analysis.error_other"),
}


def classify_outcome(outcome: JobOutcome) -> OutcomeSignal:
    """纯函数：每个终态对应唯一信号，零阶段默认终态同样适用。"""
    return _SIGNALS[outcome.final_status]


def log_outcome(job: Job, outcome: JobOutcome) -> OutcomeSignal:
    """输出分类日志并返回信号，不修改 outcome。"""
    signal = classify_outcome(outcome)
    logger.log(
        signal.level,
        signal.message,
        extra={
            "event": signal.event,
            "payload_preview": {
                "ecosystem": job.ecosystem,
                "name": job.name,
                "version": job.version,
                "last_phase": outcome.last_phase,
                "phases": outcome.result_set.phases(),
            },
        },
    )
    return signal
