"""crates.io 生态实现。"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from analysis_worker.domain.ecosystems.base import BaseEcosystem


class CratesEcosystem(BaseEcosystem):
    name = "crates.io"
    image = "gcr.io/ossf-malware-analysis/crates.io"
    command = "/usr/local/bin/analyze.py"

    def latest_version_url(self, package_name: str) -> str:
        return f"https://crates.io/api/v1/crates/{quote(package_name, safe='')}"

    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        crate = payload.get("crate") if isinstance(payload, dict) else None
        if not isinstance(crate, dict):
            return None
        return crate.get("max_stable_version") or crate.get("max_version")
