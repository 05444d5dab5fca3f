"""包注册表 HTTP 客户端：封装 JSON 查询并记录结构化日志。"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import urlsplit

import httpx

logger = logging.getLogger(__name__)


class RegistryClient:
    """包注册表同步 HTTP 客户端封装。"""
    def __init__(self, timeout_seconds: int = 30, transport: httpx.BaseTransport | None = None) -> None:
        self._closed = False
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            headers={"Accept": "application/json", "User-Agent": "package-analysis-worker"},
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            transport=transport,
        )

    def _client_or_raise(self) -> httpx.Client:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("RegistryClient is already closed")
        return self._client

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    def get_json(self, url: str) -> Any:
        """GET 指定 URL 并解析 JSON；非 2xx 响应抛出 httpx.HTTPStatusError。"""
        started = time.perf_counter()
        host = urlsplit(url).netloc
        try:
            response = self._client_or_raise().get(url)
            response.raise_for_status()
            payload = response.json()
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            status_code = None
            if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
                status_code = exc.response.status_code
            logger.error(
                "registry request failed",
                extra={
                    "event": "registry.request.failed",
                    "external_service": host,
                    "op": "GET",
                    "duration_ms": duration_ms,
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"url": url},
                },
            )
            raise
        logger.debug(
            "registry request succeeded",
            extra={
                "event": "registry.request.succeeded",
                "external_service": host,
                "op": "GET",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
        return payload
