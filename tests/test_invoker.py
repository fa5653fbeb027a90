import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from mindscape.errors import ConfigurationError, ExhaustedRetriesError, ModelTimeoutError, TransientModelError
from mindscape.invoker import ResilientInvoker, RetryableOperation


@pytest.fixture
def executor():
    ex = ThreadPoolExecutor(max_workers=4)
    yield ex
    ex.shutdown(wait=False)


@pytest.fixture
def hanging_call():
    release = threading.Event()
    calls = []

    def call(prompt):
        calls.append(prompt)
        release.wait(5)
        return "too late"

    yield call, calls
    release.set()


def test_always_timing_out_call_makes_exactly_three_attempts(executor, hanging_call):
    call, calls = hanging_call
    sleeps = []
    inv = ResilientInvoker(call, timeout_s=0.05, max_attempts=3, base_delay_ms=1000, sleep=sleeps.append, executor=executor)
    with pytest.raises(ModelTimeoutError) as ei:
        inv.invoke("prompt")
    assert ei.value.attempts == 3
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_backoff_is_really_waited(executor, hanging_call):
    call, _ = hanging_call
    inv = ResilientInvoker(call, timeout_s=0.01, max_attempts=3, base_delay_ms=20, executor=executor)
    t0 = time.monotonic()
    with pytest.raises(ModelTimeoutError):
        inv.invoke("prompt")
    assert time.monotonic() - t0 >= 0.060


def test_recovers_after_transient_errors(executor):
    replies = [TransientModelError("HTTP 503", status_code=503), TransientModelError("reset"), "ok"]

    def call(prompt):
        r = replies.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    sleeps = []
    inv = ResilientInvoker(call, timeout_s=1, max_attempts=3, base_delay_ms=10, sleep=sleeps.append, executor=executor)
    assert inv.invoke("p") == "ok"
    assert sleeps == [0.01, 0.02]


def test_persistent_errors_exhaust_retries(executor):
    def call(prompt):
        raise TransientModelError("HTTP 500", status_code=500)

    inv = ResilientInvoker(call, timeout_s=1, max_attempts=3, base_delay_ms=0, sleep=lambda s: None, executor=executor)
    with pytest.raises(ExhaustedRetriesError) as ei:
        inv.invoke("p", label="mind.analysis")
    assert ei.value.attempts == 3
    assert isinstance(ei.value.__cause__, TransientModelError)
    assert "mind.analysis" in ei.value.message


def test_configuration_errors_are_not_retried(executor):
    calls = []

    def call(prompt):
        calls.append(prompt)
        raise ConfigurationError("GOOGLE_AI_API_KEY is not configured.")

    sleeps = []
    inv = ResilientInvoker(call, timeout_s=1, max_attempts=3, sleep=sleeps.append, executor=executor)
    with pytest.raises(ConfigurationError):
        inv.invoke("p")
    assert len(calls) == 1
    assert sleeps == []


def test_single_attempt_never_sleeps(executor):
    sleeps = []

    def call(prompt):
        raise TransientModelError("nope")

    inv = ResilientInvoker(call, timeout_s=1, max_attempts=1, sleep=sleeps.append, executor=executor)
    with pytest.raises(ExhaustedRetriesError):
        inv.invoke("p")
    assert sleeps == []


def test_retryable_operation_doubles_the_delay():
    op = RetryableOperation(max_attempts=4, base_delay_ms=1000)
    delays = []
    while not op.exhausted:
        op.begin()
        delays.append(op.backoff_ms())
    assert delays == [1000, 2000, 4000, 8000]
    assert op.attempt == 4


def test_unexpected_exceptions_are_retried_too(executor):
    replies = [ValueError("bad json in transport"), "ok"]

    def call(prompt):
        r = replies.pop(0)
        if isinstance(r, Exception):
            raise r
        return r

    inv = ResilientInvoker(call, timeout_s=1, max_attempts=3, base_delay_ms=0, sleep=lambda s: None, executor=executor)
    assert inv.invoke("p") == "ok"
    assert replies == []
