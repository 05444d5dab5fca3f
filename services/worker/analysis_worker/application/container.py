"""依赖容器模块，负责单例化创建注册表客户端、存储、沙箱工厂与消息处理器。"""

from __future__ import annotations

from functools import lru_cache

from analysis_worker.application.handler import MessageHandler
from analysis_worker.config import get_settings
from analysis_worker.domain.ecosystems.registry import EcosystemRegistry
from analysis_worker.infra.registry.client import RegistryClient
from analysis_worker.infra.sandbox.podman import SandboxFactory
from analysis_worker.infra.storage.blobstore import BlobStore, open_blob_store
from analysis_worker.infra.storage.results import ResultStore


@lru_cache(maxsize=1)
def get_registry_client() -> RegistryClient:
    """获取包注册表 HTTP 客户端单例。"""
    settings = get_settings()
    return RegistryClient(timeout_seconds=settings.registry_request_timeout_seconds)


@lru_cache(maxsize=1)
def get_ecosystem_registry() -> EcosystemRegistry:
    return EcosystemRegistry(get_registry_client())


_blob_stores: dict[str, BlobStore] = {}


def get_blob_store(locator: str) -> BlobStore:
    """按定位串缓存对象存储；结果桶覆盖值也复用同一实例。"""
    store = _blob_stores.get(locator)
    if store is None:
        settings = get_settings()
        store = open_blob_store(locator, region_name=settings.aws_region, endpoint_url=settings.aws_endpoint_url)
        _blob_stores[locator] = store
    return store


def get_packages_store() -> BlobStore | None:
    """未配置包存储时返回 None，由处理器在需要时报错。"""
    locator = get_settings().packages_bucket
    if not locator:
        return None
    return get_blob_store(locator)


def get_result_store(locator: str) -> ResultStore:
    return ResultStore(get_blob_store(locator))


@lru_cache(maxsize=1)
def get_sandbox_factory() -> SandboxFactory:
    settings = get_settings()
    return SandboxFactory(
        podman_bin=settings.sandbox_podman_bin,
        runtime=settings.sandbox_runtime,
        timeout_seconds=settings.sandbox_phase_timeout_seconds,
        output_max_chars=settings.sandbox_output_max_chars,
    )


@lru_cache(maxsize=1)
def get_message_handler() -> MessageHandler:
    """获取消息处理器单例。"""
    settings = get_settings()
    return MessageHandler(
        ecosystems=get_ecosystem_registry(),
        sandbox_factory=get_sandbox_factory(),
        result_store_for=get_result_store,
        packages_store=get_packages_store(),
        default_results_bucket=settings.results_bucket,
        image_tag=settings.image_tag,
    )


def shutdown_container_resources() -> None:
    """关闭共享客户端并清理依赖容器缓存。"""
    if get_registry_client.cache_info().currsize:
        get_registry_client().close()
    stores = list(_blob_stores.values())
    _blob_stores.clear()
    for store in stores:
        store.close()

    # 按依赖顺序清理缓存，确保后续调用可重新构建全新实例。
    for provider in (
        get_message_handler,
        get_sandbox_factory,
        get_ecosystem_registry,
        get_registry_client,
    ):
        provider.cache_clear()
