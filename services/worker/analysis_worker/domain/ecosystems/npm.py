"""npm 生态实现：通过 registry.npmjs.org 的 dist-tags 解析最新版本。"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from analysis_worker.domain.ecosystems.base import BaseEcosystem


class NpmEcosystem(BaseEcosystem):
    """npm 包分析能力集合。"""
    name = "npm"
    image = "gcr.io/ossf-malware-analysis/node"
    command = "/usr/local/bin/analyze.js"

    def latest_version_url(self, package_name: str) -> str:
        # scoped 包名中的斜杠需要转义，@ 保留。
        return f"https://registry.npmjs.org/{quote(package_name, safe='@')}"

    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        tags = payload.get("dist-tags") if isinstance(payload, dict) else None
        if not isinstance(tags, dict):
            return None
        return tags.get("latest")
