"""生态注册中心：管理生态实例注册与按名称查询。"""

from __future__ import annotations

from analysis_worker.domain.ecosystems.base import BaseEcosystem, JsonFetcher
from analysis_worker.domain.ecosystems.crates import CratesEcosystem
from analysis_worker.domain.ecosystems.npm import NpmEcosystem
from analysis_worker.domain.ecosystems.packagist import PackagistEcosystem
from analysis_worker.domain.ecosystems.pypi import PyPIEcosystem
from analysis_worker.domain.ecosystems.rubygems import RubyGemsEcosystem
from analysis_worker.domain.errors import UnsupportedEcosystemError


class EcosystemRegistry:
    """生态注册中心，统一管理受支持的包管理生态。"""
    def __init__(self, fetcher: JsonFetcher) -> None:
        self._ecosystems: dict[str, BaseEcosystem] = {}
        for ecosystem_cls in (NpmEcosystem, PyPIEcosystem, RubyGemsEcosystem, PackagistEcosystem, CratesEcosystem):
            self.register(ecosystem_cls(fetcher))

    def register(self, ecosystem: BaseEcosystem) -> None:
        """注册生态实例，同名覆盖。"""
        self._ecosystems[ecosystem.name] = ecosystem

    def get(self, name: str) -> BaseEcosystem:
        """按生态名称获取实例；未注册时抛出 UnsupportedEcosystemError。"""
        try:
            return self._ecosystems[name]
        except KeyError as exc:
            raise UnsupportedEcosystemError(f"unsupported ecosystem: {name}") from exc

    def names(self) -> list[str]:
        return list(self._ecosystems)
