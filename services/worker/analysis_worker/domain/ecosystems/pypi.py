"""PyPI 生态实现：通过 JSON API 的 info.version 解析最新版本。"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from analysis_worker.domain.ecosystems.base import BaseEcosystem


class PyPIEcosystem(BaseEcosystem):
    """PyPI 包分析能力集合。"""
    name = "pypi"
    image = "gcr.io/ossf-malware-analysis/python"
    command = "/usr/local/bin/analyze.py"

    def latest_version_url(self, package_name: str) -> str:
        return f"https://pypi.org/pypi/{quote(package_name, safe='')}/json"

    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        info = payload.get("info") if isinstance(payload, dict) else None
        if not isinstance(info, dict):
            return None
        return info.get("version")
