"""队列订阅抽象：阻塞接收消息，消息携带字符串元数据与 ack 回调。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from analysis_worker.config import Settings


@dataclass(slots=True)
class QueueMessage:
    """单条入站消息；ack 只生效一次。"""
    message_id: str
    metadata: Mapping[str, str]
    _ack: Callable[[], None] = field(repr=False)
    acked: bool = False

    def ack(self) -> None:
        if self.acked:
            return
        self._ack()
        self.acked = True


class Subscription(ABC):
    """订阅连接；receive 抛出 SubscriptionError 后实例不可再用。"""

    @abstractmethod
    def receive(self) -> QueueMessage:
        """阻塞直到收到下一条消息。"""

    def close(self) -> None:
        return None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()


def open_subscription(locator: str, settings: Settings) -> Subscription:
    """按定位串打开订阅；支持 awssqs:// 与 redis://。"""
    scheme = urlsplit(locator).scheme.lower()
    if scheme == "awssqs":
        from analysis_worker.infra.queue.sqs import SqsSubscription

        return SqsSubscription.from_locator(locator, settings)
    if scheme in {"redis", "rediss"}:
        from analysis_worker.infra.queue.redis_stream import RedisStreamSubscription

        return RedisStreamSubscription.from_locator(locator, settings)
    raise ValueError(f"unsupported subscription locator: {locator!r}")
