"""AWS SQS 订阅实现：长轮询接收，ack 即删除消息，未 ack 的消息在可见性超时后重投。"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import parse_qs, urlsplit

from analysis_worker.config import Settings
from analysis_worker.domain.errors import SubscriptionError
from analysis_worker.infra.queue.base import QueueMessage, Subscription

logger = logging.getLogger(__name__)


def queue_url_from_locator(locator: str) -> tuple[str, str | None]:
    """awssqs://<host>/<account>/<queue>?region=<r> -> (https 队列地址, region)。"""
    parts = urlsplit(locator)
    if parts.scheme.lower() != "awssqs" or not parts.netloc or not parts.path.strip("/"):
        raise ValueError(f"invalid SQS locator: {locator!r}")
    region = parse_qs(parts.query).get("region", [None])[0]
    return f"https://{parts.netloc}{parts.path}", region


def extract_metadata(message: dict[str, Any]) -> dict[str, str]:
    """优先读取字符串类型的 MessageAttributes；缺失时回退到 JSON 消息体。"""
    metadata: dict[str, str] = {}
    for key, attr in (message.get("MessageAttributes") or {}).items():
        value = attr.get("StringValue") if isinstance(attr, dict) else None
        if value is not None:
            metadata[key] = str(value)
    if metadata:
        return metadata
    try:
        body = json.loads(message.get("Body") or "{}")
    except json.JSONDecodeError:
        return {}
    if not isinstance(body, dict):
        return {}
    return {str(key): str(value) for key, value in body.items() if isinstance(value, (str, int, float))}


class SqsSubscription(Subscription):
    """基于 boto3 的 SQS 订阅。"""
    def __init__(
        self,
        queue_url: str,
        *,
        client: Any,
        wait_time_seconds: int = 20,
        visibility_timeout_seconds: int = 3600,
    ) -> None:
        self._queue_url = queue_url
        self._client = client
        self._wait_time_seconds = wait_time_seconds
        self._visibility_timeout_seconds = visibility_timeout_seconds

    @classmethod
    def from_locator(cls, locator: str, settings: Settings) -> "SqsSubscription":
        try:
            import boto3
        except ModuleNotFoundError as exc:
            raise RuntimeError("boto3 is required for awssqs:// subscriptions") from exc
        queue_url, region = queue_url_from_locator(locator)
        kwargs: dict[str, Any] = {"region_name": region or settings.aws_region}
        if settings.aws_endpoint_url:
            kwargs["endpoint_url"] = settings.aws_endpoint_url
        return cls(
            queue_url,
            client=boto3.client("sqs", **kwargs),
            wait_time_seconds=settings.sqs_wait_time_seconds,
            visibility_timeout_seconds=settings.sqs_visibility_timeout_seconds,
        )

    def receive(self) -> QueueMessage:
        while True:
            try:
                response = self._client.receive_message(
                    QueueUrl=self._queue_url,
                    MaxNumberOfMessages=1,
                    WaitTimeSeconds=self._wait_time_seconds,
                    VisibilityTimeout=self._visibility_timeout_seconds,
                    MessageAttributeNames=["All"],
                )
            except Exception as exc:
                raise SubscriptionError(f"sqs receive failed: {exc}") from exc
            messages = response.get("Messages") or []
            if not messages:
                # 长轮询窗口内无消息，继续阻塞等待。
                continue
            raw = messages[0]
            receipt_handle = raw["ReceiptHandle"]
            return QueueMessage(
                message_id=str(raw.get("MessageId", "")),
                metadata=extract_metadata(raw),
                _ack=lambda: self._delete(receipt_handle),
            )

    def _delete(self, receipt_handle: str) -> None:
        self._client.delete_message(QueueUrl=self._queue_url, ReceiptHandle=receipt_handle)

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()
