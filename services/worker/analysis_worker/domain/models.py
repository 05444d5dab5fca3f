"""领域数据结构定义：作业、包引用、阶段结果与作业结论等值对象。"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from analysis_worker.domain.enums import AnalysisStatus


@dataclass(frozen=True, slots=True)
class Job:
    """由单条队列消息派生的作业描述，仅在一次处理内有效。"""
    name: str
    ecosystem: str
    version: str = ""
    package_path: str = ""
    results_bucket_override: str = ""

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, str]) -> "Job":
        """从消息元数据构建作业，缺失字段按空串处理。"""
        return cls(
            name=metadata.get("name", "") or "",
            ecosystem=metadata.get("ecosystem", "") or "",
            version=metadata.get("version", "") or "",
            package_path=metadata.get("package_path", "") or "",
            results_bucket_override=metadata.get("results_bucket_override", "") or "",
        )


@dataclass(frozen=True, slots=True)
class Package:
    """已解析的可执行包引用。"""
    ecosystem: str
    name: str
    version: str
    local_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ecosystem": self.ecosystem,
            "name": self.name,
            "version": self.version,
            "local_path": self.local_path,
        }


@dataclass(frozen=True, slots=True)
class PhaseResult:
    """单个分析阶段的执行结果，创建后不再修改。"""
    status: AnalysisStatus
    output: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "output": self.output}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PhaseResult":
        return cls(status=AnalysisStatus(payload["status"]), output=dict(payload.get("output") or {}))


@dataclass(frozen=True, slots=True)
class ResultSet:
    """按执行顺序排列的阶段名到结果的不可变映射。"""
    entries: tuple[tuple[str, PhaseResult], ...] = ()

    def with_result(self, phase: str, result: PhaseResult) -> "ResultSet":
        """返回追加一个阶段结果后的新 ResultSet。"""
        if phase in self.phases():
            raise ValueError(f"phase already recorded: {phase}")
        return ResultSet(entries=self.entries + ((phase, result),))

    def phases(self) -> list[str]:
        return [phase for phase, _ in self.entries]

    def get(self, phase: str) -> PhaseResult | None:
        for name, result in self.entries:
            if name == phase:
                return result
        return None

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {phase: result.to_dict() for phase, result in self.entries}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Mapping[str, Any]]) -> "ResultSet":
        # dict 保持插入顺序，JSON 解码后的阶段顺序即写入顺序。
        return cls(entries=tuple((phase, PhaseResult.from_dict(item)) for phase, item in payload.items()))

    def __iter__(self) -> Iterator[tuple[str, PhaseResult]]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True, slots=True)
class JobOutcome:
    """全部阶段执行完毕或首个失败后得到的作业结论。"""
    final_status: AnalysisStatus
    last_phase: str
    result_set: ResultSet
