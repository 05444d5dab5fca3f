"""订阅循环：逐条阻塞接收消息并交给处理器；订阅级错误结束循环，作业级错误只记录日志。"""

from __future__ import annotations

import logging
from collections.abc import Callable

from analysis_worker.domain.errors import SubscriptionError
from analysis_worker.infra.queue.base import QueueMessage, Subscription

logger = logging.getLogger(__name__)


def message_loop(
    subscribe: Callable[[], Subscription],
    handle: Callable[[QueueMessage], object],
) -> None:
    """打开一个订阅并持续处理消息，只会以异常方式退出。"""
    with subscribe() as subscription:
        logger.info("Listening for messages to process...", extra={"event": "worker.loop.listening"})
        while True:
            try:
                message = subscription.receive()
            except SubscriptionError:
                raise
            except Exception as exc:
                # 之后的 receive 会返回同样的错误，交给外层重建订阅。
                raise SubscriptionError(f"error receiving message: {exc}") from exc

            try:
                handle(message)
            except Exception as exc:
                logger.error(
                    "Failed to process message",
                    exc_info=True,
                    extra={
                        "event": "job.failed",
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "payload_preview": {"message_id": message.message_id, "metadata": dict(message.metadata)},
                    },
                )
