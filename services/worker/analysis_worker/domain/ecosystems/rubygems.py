"""RubyGems 生态实现。"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from analysis_worker.domain.ecosystems.base import BaseEcosystem


class RubyGemsEcosystem(BaseEcosystem):
    name = "rubygems"
    image = "gcr.io/ossf-malware-analysis/ruby"
    command = "/usr/local/bin/analyze.rb"

    def latest_version_url(self, package_name: str) -> str:
        return f"https://rubygems.org/api/v1/versions/{quote(package_name, safe='')}/latest.json"

    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        if not isinstance(payload, dict):
            return None
        version = payload.get("version")
        # 未知 gem 时接口返回 {"version": "unknown"}。
        if version == "unknown":
            return None
        return version
