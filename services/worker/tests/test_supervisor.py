"""重试监督器测试：验证退避序列、失败上限与正常返回的处理。"""

from __future__ import annotations

import pytest

from analysis_worker.domain.errors import SubscriptionError
from analysis_worker.worker.supervisor import RetryPolicy, RetryState, run_attempt, supervise


def test_backoff_sequence_matches_formula() -> None:
    policy = RetryPolicy(interval=1, exp_rate=1.5)
    assert [policy.delay(n) for n in range(1, 5)] == [1, 2, 3, 5]


def test_backoff_strictly_increasing_over_default_retry_budget() -> None:
    policy = RetryPolicy()
    delays = [policy.delay(n) for n in range(1, policy.max_retries + 1)]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))


def test_retry_state_increments_by_one() -> None:
    state = RetryState()
    assert state.record_failure().record_failure() == RetryState(failures=2)
    assert state.failures == 0


@pytest.mark.parametrize("max_retries", [1, 3, 10])
def test_supervisor_stops_after_exactly_max_failures(max_retries: int) -> None:
    """连续失败恰好 max_retries 次后停止，之前每次失败都会退避。"""
    calls: list[int] = []
    sleeps: list[float] = []

    def _failing_loop() -> None:
        calls.append(1)
        raise SubscriptionError("receive failed")

    policy = RetryPolicy(max_retries=max_retries)
    state = supervise(_failing_loop, policy, sleep=sleeps.append)

    assert len(calls) == max_retries
    assert state.failures == max_retries
    assert sleeps == [policy.delay(n) for n in range(1, max_retries)]


def test_normal_return_counts_as_loop_exit() -> None:
    calls: list[int] = []
    state = supervise(lambda: calls.append(1), RetryPolicy(max_retries=2), sleep=lambda _seconds: None)
    assert len(calls) == 2
    assert state.failures == 2


def test_recovered_loop_keeps_counting_failures() -> None:
    """成功处理消息不会重置计数，只有进程重启才会。"""
    sleeps: list[float] = []
    policy = RetryPolicy(max_retries=5)
    state = run_attempt(lambda: None, policy, RetryState(failures=3), sleep=sleeps.append)
    assert state.failures == 4
    assert sleeps == [policy.delay(4)]


def test_run_attempt_does_not_sleep_when_exhausted() -> None:
    sleeps: list[float] = []
    state = run_attempt(lambda: None, RetryPolicy(max_retries=1), RetryState(), sleep=sleeps.append)
    assert state.failures == 1
    assert sleeps == []
