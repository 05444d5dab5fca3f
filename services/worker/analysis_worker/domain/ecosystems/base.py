"""生态抽象基类，约束版本查询、阶段列表与沙箱命令构建接口。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol

from analysis_worker.domain.errors import ResolutionError
from analysis_worker.domain.models import Package


class JsonFetcher(Protocol):
    """注册表查询依赖：按 URL 返回 JSON 文档。"""

    def get_json(self, url: str) -> Any: ...


class BaseEcosystem(ABC):
    """包管理生态抽象基类，定义各生态必须提供的能力集合。"""
    name: str
    image: str
    command: str
    phases: tuple[str, ...] = ("install", "import")

    def __init__(self, fetcher: JsonFetcher) -> None:
        self._fetcher = fetcher

    @abstractmethod
    def latest_version_url(self, package_name: str) -> str:
        """返回查询最新版本所用的注册表 URL。"""

    @abstractmethod
    def extract_latest_version(self, payload: Any, package_name: str) -> str | None:
        """从注册表响应中提取最新版本号。"""

    def latest_version(self, package_name: str) -> str:
        """查询注册表中的最新版本；任何失败都转换为 ResolutionError。"""
        url = self.latest_version_url(package_name)
        try:
            payload = self._fetcher.get_json(url)
            version = self.extract_latest_version(payload, package_name)
        except ResolutionError:
            raise
        except Exception as exc:
            raise ResolutionError(f"latest version lookup failed for {self.name}/{package_name}: {exc}") from exc
        if not version:
            raise ResolutionError(f"registry returned no version for {self.name}/{package_name}")
        return str(version)

    def phase_list(self) -> tuple[str, ...]:
        return self.phases

    def local(self, package_name: str, version: str, local_path: str) -> Package:
        return Package(ecosystem=self.name, name=package_name, version=version, local_path=local_path)

    def package(self, package_name: str, version: str) -> Package:
        return Package(ecosystem=self.name, name=package_name, version=version)

    def latest(self, package_name: str) -> Package:
        return self.package(package_name, self.latest_version(package_name))

    def command_for(self, package: Package, phase: str) -> list[str]:
        """构建沙箱内执行某阶段分析的命令行。"""
        args = [self.command]
        # 本地包优先于版本号，与解析顺序一致。
        if package.local_path:
            args.extend(["--local", package.local_path])
        elif package.version:
            args.extend(["--version", package.version])
        args.append(phase)
        args.append(package.name)
        return args
