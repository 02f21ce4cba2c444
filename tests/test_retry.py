import pytest

from mazel_draw_bot.errors import IndexerError, RetryExhaustedError, RpcError
from mazel_draw_bot.retry import RetryExecutor


class Flaky:
    def __init__(self, failures, result="ok", error=None):
        self.failures = failures
        self.result = result
        self.error = error or RpcError("connection reset")
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


def test_backoff_schedule_then_gives_up():
    sleeps = []
    retry = RetryExecutor(max_retries=3, base_delay_ms=1000, sleep=sleeps.append)
    op = Flaky(failures=10)

    with pytest.raises(RetryExhaustedError) as exc:
        retry.run("main.execute", op)

    assert sleeps == [1.0, 2.0, 4.0]
    assert op.calls == 4
    assert exc.value.attempts == 4
    assert isinstance(exc.value.last_error, RpcError)


def test_delays_ms():
    executor = RetryExecutor(max_retries=3, base_delay_ms=1000)
    assert executor.delays_ms() == (1000, 2000, 4000)


def test_succeeds_after_transient_failures():
    sleeps = []
    retry = RetryExecutor(max_retries=3, base_delay_ms=500, sleep=sleeps.append)
    op = Flaky(failures=2, result=42)
    assert retry.run("op", op) == 42
    assert sleeps == [0.5, 1.0]


def test_non_transient_errors_propagate_immediately():
    sleeps = []
    retry = RetryExecutor(max_retries=3, base_delay_ms=1000, sleep=sleeps.append)
    op = Flaky(failures=1, error=IndexerError("bad numbers"))
    with pytest.raises(IndexerError):
        retry.run("op", op)
    assert op.calls == 1
    assert sleeps == []


def test_on_retry_hook_sees_each_retry():
    seen = []
    retry = RetryExecutor(max_retries=2, base_delay_ms=1, sleep=lambda s: None)
    with pytest.raises(RetryExhaustedError):
        retry.run("op", Flaky(failures=5), on_retry=lambda n, e: seen.append(n))
    assert seen == [1, 2]


def test_zero_retries_runs_once():
    retry = RetryExecutor(max_retries=0, base_delay_ms=1000, sleep=lambda s: None)
    op = Flaky(failures=1)
    with pytest.raises(RetryExhaustedError):
        retry.run("op", op)
    assert op.calls == 1
