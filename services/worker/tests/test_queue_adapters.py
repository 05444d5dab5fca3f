"""队列适配器测试：用桩客户端验证 SQS 与 Redis Streams 的接收、元数据与 ack 行为。"""

from __future__ import annotations

import json
from typing import Any

import pytest
import redis

from analysis_worker.config import Settings
from analysis_worker.domain.errors import SubscriptionError
from analysis_worker.infra.queue.base import open_subscription
from analysis_worker.infra.queue.redis_stream import RedisStreamSubscription, split_locator
from analysis_worker.infra.queue.sqs import SqsSubscription, extract_metadata, queue_url_from_locator


class _SqsClientStub:
    def __init__(self, responses: list[Any]) -> None:
        self._responses = list(responses)
        self.receive_calls: list[dict[str, Any]] = []
        self.deleted: list[str] = []

    def receive_message(self, **kwargs: Any) -> dict[str, Any]:
        self.receive_calls.append(kwargs)
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def delete_message(self, *, QueueUrl: str, ReceiptHandle: str) -> None:
        self.deleted.append(ReceiptHandle)


def _attr(value: str) -> dict[str, str]:
    return {"DataType": "String", "StringValue": value}


def test_queue_url_from_locator() -> None:
    assert queue_url_from_locator("awssqs://sqs.us-east-2.amazonaws.com/123456789012/jobs?region=us-east-2") == (
        "https://sqs.us-east-2.amazonaws.com/123456789012/jobs",
        "us-east-2",
    )
    with pytest.raises(ValueError):
        queue_url_from_locator("awssqs://sqs.us-east-2.amazonaws.com")


def test_extract_metadata_prefers_message_attributes() -> None:
    message = {
        "Body": json.dumps({"name": "ignored"}),
        "MessageAttributes": {"name": _attr("left-pad"), "ecosystem": _attr("npm"), "blob": {"BinaryValue": b"x"}},
    }
    assert extract_metadata(message) == {"name": "left-pad", "ecosystem": "npm"}


def test_extract_metadata_falls_back_to_json_body() -> None:
    assert extract_metadata({"Body": json.dumps({"name": "requests", "ecosystem": "pypi", "nested": {}})}) == {
        "name": "requests",
        "ecosystem": "pypi",
    }
    assert extract_metadata({"Body": "not json"}) == {}
    assert extract_metadata({"Body": "[1, 2]"}) == {}


def test_sqs_receive_skips_empty_polls_and_ack_deletes() -> None:
    client = _SqsClientStub(
        [
            {"Messages": []},
            {
                "Messages": [
                    {
                        "MessageId": "m-1",
                        "ReceiptHandle": "rh-1",
                        "MessageAttributes": {"name": _attr("left-pad"), "ecosystem": _attr("npm")},
                    }
                ]
            },
        ]
    )
    subscription = SqsSubscription("https://queue", client=client, wait_time_seconds=1)

    message = subscription.receive()
    assert message.message_id == "m-1"
    assert dict(message.metadata) == {"name": "left-pad", "ecosystem": "npm"}
    assert client.deleted == []

    message.ack()
    message.ack()
    assert client.deleted == ["rh-1"]
    assert len(client.receive_calls) == 2
    assert client.receive_calls[0]["MessageAttributeNames"] == ["All"]


def test_sqs_receive_error_becomes_subscription_error() -> None:
    subscription = SqsSubscription("https://queue", client=_SqsClientStub([ConnectionError("endpoint down")]))
    with pytest.raises(SubscriptionError):
        subscription.receive()


class _RedisClientStub:
    """记录 XGROUP/XREADGROUP/XAUTOCLAIM/XACK 调用的最小 redis 桩。"""
    def __init__(
        self,
        *,
        entries: list[tuple[Any, dict[Any, Any]]] | None = None,
        stale: list[tuple[Any, dict[Any, Any]]] | None = None,
        group_error: Exception | None = None,
        read_error: Exception | None = None,
    ) -> None:
        self.entries = list(entries or [])
        self.stale = list(stale or [])
        self.group_error = group_error
        self.read_error = read_error
        self.acked: list[Any] = []
        self.claim_starts: list[Any] = []
        self.claim_cursors: list[Any] = []
        self.groups: list[tuple[str, str]] = []
        self.closed = False

    def xgroup_create(self, stream: str, group: str, id: str = "$", mkstream: bool = False) -> None:
        if self.group_error is not None:
            raise self.group_error
        self.groups.append((stream, group))

    def xautoclaim(self, stream: str, group: str, consumer: str, **kwargs: Any) -> list[Any]:
        self.claim_starts.append(kwargs["start_id"])
        claimed = [self.stale.pop(0)] if self.stale else []
        cursor = self.claim_cursors.pop(0) if self.claim_cursors else b"0-0"
        return [cursor, claimed, []]

    def xreadgroup(self, group: str, consumer: str, streams: dict[str, str], **kwargs: Any) -> list[Any]:
        if self.read_error is not None:
            raise self.read_error
        if not self.entries:
            return []
        stream = next(iter(streams))
        return [[stream, [self.entries.pop(0)]]]

    def xack(self, stream: str, group: str, entry_id: Any) -> int:
        self.acked.append(entry_id)
        return 1

    def close(self) -> None:
        self.closed = True


def _redis_subscription(client: _RedisClientStub) -> RedisStreamSubscription:
    return RedisStreamSubscription(client, stream="jobs", group="workers", consumer="c1", block_ms=10)


def test_split_locator_extracts_stream_params() -> None:
    url, params = split_locator("redis://:pw@cache:6379/0?stream=jobs&consumer=w1&socket_timeout=5")
    assert url == "redis://:pw@cache:6379/0?socket_timeout=5"
    assert params["stream"] == "jobs"
    assert params["group"] == "package-analysis"
    assert params["consumer"] == "w1"
    with pytest.raises(ValueError):
        split_locator("redis://cache:6379/0")


def test_redis_receive_and_ack() -> None:
    client = _RedisClientStub(entries=[("1-0", {"name": "left-pad", "ecosystem": "npm"})])
    subscription = _redis_subscription(client)

    message = subscription.receive()
    assert client.groups == [("jobs", "workers")]
    assert message.message_id == "1-0"
    assert dict(message.metadata) == {"name": "left-pad", "ecosystem": "npm"}

    message.ack()
    assert client.acked == ["1-0"]
    subscription.close()
    assert client.closed is True


def test_redis_reclaims_stale_entries_first() -> None:
    client = _RedisClientStub(
        entries=[("2-0", {"name": "fresh", "ecosystem": "npm"})],
        stale=[("1-0", {"name": "stale", "ecosystem": "npm"})],
    )
    subscription = _redis_subscription(client)

    assert subscription.receive().metadata["name"] == "stale"
    assert subscription.receive().metadata["name"] == "fresh"


def test_redis_existing_group_is_reused() -> None:
    client = _RedisClientStub(
        group_error=redis.ResponseError("BUSYGROUP Consumer Group name already exists"),
        entries=[("1-0", {"name": "x", "ecosystem": "npm"})],
    )
    assert _redis_subscription(client).receive().message_id == "1-0"


def test_redis_errors_become_subscription_errors() -> None:
    with pytest.raises(SubscriptionError):
        _redis_subscription(_RedisClientStub(group_error=redis.ConnectionError("refused")))

    subscription = _redis_subscription(_RedisClientStub(read_error=redis.ConnectionError("reset")))
    with pytest.raises(SubscriptionError):
        subscription.receive()


def test_open_subscription_rejects_unknown_scheme() -> None:
    with pytest.raises(ValueError):
        open_subscription("kafka://broker/jobs", Settings())
    with pytest.raises(ValueError):
        open_subscription("", Settings())


def test_redis_undecodable_entry_is_acked_and_skipped() -> None:
    """原始字节条目：非 UTF-8 的条目被 ack 丢弃，后续合法条目正常交付。"""
    client = _RedisClientStub(
        entries=[
            (b"1-0", {b"name": b"\xff\xfe", b"ecosystem": b"npm"}),
            (b"2-0", {b"name": b"left-pad", b"ecosystem": b"npm"}),
        ]
    )
    subscription = _redis_subscription(client)

    message = subscription.receive()

    assert message.message_id == "2-0"
    assert dict(message.metadata) == {"name": "left-pad", "ecosystem": "npm"}
    assert client.acked == [b"1-0"]
    message.ack()
    assert client.acked == [b"1-0", b"2-0"]


def test_redis_undecodable_stale_entry_is_dropped() -> None:
    client = _RedisClientStub(
        stale=[(b"1-0", {b"name": b"\xc3\x28", b"ecosystem": b"npm"})],
        entries=[(b"2-0", {b"name": b"fresh", b"ecosystem": b"npm"})],
    )
    subscription = _redis_subscription(client)

    assert subscription.receive().metadata["name"] == "fresh"
    assert client.acked == [b"1-0"]


def test_redis_claim_cursor_carries_across_calls() -> None:
    client = _RedisClientStub(
        entries=[("1-0", {"name": "a", "ecosystem": "npm"}), ("2-0", {"name": "b", "ecosystem": "npm"})]
    )
    client.claim_cursors = [b"17-3", b"0-0"]
    subscription = _redis_subscription(client)

    subscription.receive()
    subscription.receive()

    assert client.claim_starts == ["0-0", "17-3"]
