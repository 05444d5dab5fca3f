"""Packagist 生态实现：p2 元数据接口中首个版本即最新版本。"""

from __future__ import annotations

from typing import Any

from analysis_worker.domain.ecosystems.base import BaseEcosystem


class PackagistEcosystem(BaseEcosystem):
    """Packagist (Composer) 包分析能力集合。"""
    name = "packagist"
    image = "gcr.io/ossf-malware-analysis/php"
    command = "/usr/local/bin/analyze.php"

    def latest_version_url(self, package_name: str) -> str:
        # Composer 包名形如 vendor/package，斜杠是路径的一部分。
        return f"https://repo.packagist.org/p2/{package_name}.json"

    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        packages = payload.get("packages") if isinstance(payload, dict) else None
        if not isinstance(packages, dict):
            return None
        versions = packages.get(package_name)
        if not versions:
            return None
        return versions[0].get("version")
