"""重试监督器：订阅循环退出后按指数退避重启，连续失败达到上限后停止。"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from analysis_worker.domain.errors import SubscriptionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """退避参数：delay(n) = floor(interval * exp_rate ** n) 秒。"""
    max_retries: int = 10
    interval: float = 1
    exp_rate: float = 1.5

    def delay(self, failures: int) -> int:
        return math.floor(self.interval * math.pow(self.exp_rate, failures))


@dataclass(frozen=True, slots=True)
class RetryState:
    """连续失败计数，仅在进程重启时归零。"""
    failures: int = 0

    def record_failure(self) -> "RetryState":
        return RetryState(failures=self.failures + 1)

    def exhausted(self, policy: RetryPolicy) -> bool:
        return self.failures >= policy.max_retries


def run_attempt(
    run_loop: Callable[[], None],
    policy: RetryPolicy,
    state: RetryState,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryState:
    """执行一次订阅循环并返回更新后的计数；未耗尽时先完成退避等待。"""
    try:
        run_loop()
        error: BaseException = SubscriptionError("message loop returned unexpectedly")
    except Exception as exc:
        error = exc

    state = state.record_failure()
    if state.exhausted(policy):
        logger.critical(
            "Retries exceeded",
            extra={
                "event": "worker.retries.exceeded",
                "retry": state.failures,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        return state

    wait_seconds = policy.delay(state.failures)
    logger.error(
        "Error encountered, retrying",
        extra={
            "event": "worker.loop.retrying",
            "retry": state.failures,
            "error_type": type(error).__name__,
            "error": str(error),
            "payload_preview": {"wait_seconds": wait_seconds},
        },
    )
    sleep(wait_seconds)
    return state


def supervise(
    run_loop: Callable[[], None],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryState:
    """反复运行订阅循环直到连续失败次数达到 max_retries，返回最终计数。"""
    state = RetryState()
    while not state.exhausted(policy):
        state = run_attempt(run_loop, policy, state, sleep=sleep)
    return state
