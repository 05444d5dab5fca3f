"""Redis Streams 订阅实现：消费组读取，XACK 确认，空闲过久的未确认条目重新认领。"""

from __future__ import annotations

import logging
import socket
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import redis

from analysis_worker.config import Settings
from analysis_worker.domain.errors import SubscriptionError
from analysis_worker.infra.queue.base import QueueMessage, Subscription

logger = logging.getLogger(__name__)

_STREAM_PARAMS = ("stream", "group", "consumer")


def split_locator(locator: str) -> tuple[str, dict[str, str]]:
    """拆分出 redis 连接地址与 stream/group/consumer 参数。"""
    parts = urlsplit(locator)
    query = parse_qsl(parts.query, keep_blank_values=False)
    stream_params = {key: value for key, value in query if key in _STREAM_PARAMS}
    connection_query = [(key, value) for key, value in query if key not in _STREAM_PARAMS]
    if not stream_params.get("stream"):
        raise ValueError("redis subscription locator requires a stream parameter")
    stream_params.setdefault("group", "package-analysis")
    stream_params.setdefault("consumer", socket.gethostname())
    url = urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(connection_query), ""))
    return url, stream_params


class RedisStreamSubscription(Subscription):
    """基于 redis-py 消费组的订阅。"""
    def __init__(
        self,
        client: Any,
        *,
        stream: str,
        group: str,
        consumer: str,
        block_ms: int = 5000,
        claim_idle_ms: int = 2 * 60 * 60 * 1000,
    ) -> None:
        self._client = client
        self._stream = stream
        self._group = group
        self._consumer = consumer
        self._block_ms = block_ms
        self._claim_idle_ms = claim_idle_ms
        self._claim_cursor = "0-0"
        self._ensure_group()

    @classmethod
    def from_locator(cls, locator: str, settings: Settings) -> "RedisStreamSubscription":
        url, params = split_locator(locator)
        return cls(
            redis.Redis.from_url(url, decode_responses=False),
            stream=params["stream"],
            group=params["group"],
            consumer=params["consumer"],
            block_ms=settings.redis_block_ms,
            claim_idle_ms=settings.redis_claim_idle_ms,
        )

    def _ensure_group(self) -> None:
        try:
            self._client.xgroup_create(self._stream, self._group, id="0", mkstream=True)
        except redis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise SubscriptionError(f"redis consumer group setup failed: {exc}") from exc
        except redis.RedisError as exc:
            raise SubscriptionError(f"redis consumer group setup failed: {exc}") from exc

    def _to_message(self, entry_id: Any, fields: dict[Any, Any]) -> QueueMessage | None:
        """解码条目字段；非 UTF-8 内容属于生产者错误，记录后直接 ack 丢弃，返回 None。"""
        message_id = _text(entry_id, errors="replace")
        try:
            metadata = {_text(key): _text(value) for key, value in fields.items()}
        except UnicodeDecodeError as exc:
            logger.warning(
                "dropping undecodable stream entry",
                extra={
                    "event": "queue.redis.undecodable",
                    "external_service": "redis",
                    "op": "decode",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"entry_id": message_id, "stream": self._stream},
                },
            )
            self._client.xack(self._stream, self._group, entry_id)
            return None
        return QueueMessage(
            message_id=message_id,
            metadata=metadata,
            _ack=lambda: self._client.xack(self._stream, self._group, entry_id),
        )

    def _claim_stale(self) -> QueueMessage | None:
        # 其他 consumer 崩溃或作业未 ack 的条目，空闲超过阈值后由本 consumer 重新处理。
        # 游标跨调用保留，单次扫描窗口之外的待处理条目也能轮到。
        result = self._client.xautoclaim(
            self._stream,
            self._group,
            self._consumer,
            min_idle_time=self._claim_idle_ms,
            start_id=self._claim_cursor,
            count=1,
        )
        if not result:
            return None
        self._claim_cursor = _text(result[0], errors="replace") or "0-0"
        claimed = result[1] if len(result) > 1 else []
        for entry_id, fields in claimed:
            if not fields:
                continue
            message = self._to_message(entry_id, fields)
            if message is None:
                continue
            logger.info(
                "stale stream entry reclaimed",
                extra={
                    "event": "queue.redis.reclaimed",
                    "external_service": "redis",
                    "op": "xautoclaim",
                    "payload_preview": {"entry_id": message.message_id, "stream": self._stream},
                },
            )
            return message
        return None

    def _read_new(self) -> QueueMessage | None:
        response = self._client.xreadgroup(
            self._group,
            self._consumer,
            {self._stream: ">"},
            count=1,
            block=self._block_ms,
        )
        for _stream, entries in response or []:
            for entry_id, fields in entries:
                message = self._to_message(entry_id, fields)
                if message is not None:
                    return message
        return None

    def receive(self) -> QueueMessage:
        while True:
            try:
                message = self._claim_stale()
                if message is None:
                    message = self._read_new()
            except redis.RedisError as exc:
                raise SubscriptionError(f"redis receive failed: {exc}") from exc
            if message is not None:
                return message

    def close(self) -> None:
        self._client.close()


def _text(value: Any, errors: str = "strict") -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors=errors)
    return str(value)
