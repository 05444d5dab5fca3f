"""领域枚举定义：统一分析阶段结果状态取值。"""

from __future__ import annotations

from enum import Enum


class AnalysisStatus(str, Enum):
    """单个分析阶段的终态枚举。"""
    completed = "completed"
    error_analysis = "error_analysis"
    error_timeout = "error_timeout"
    error_other = "error_other"
