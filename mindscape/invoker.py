from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, Optional

from mindscape.errors import ConfigurationError, ExhaustedRetriesError, ModelTimeoutError

log = logging.getLogger(__name__)

try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "30") or 30)
except ValueError:
    LLM_TIMEOUT_SECS = 30.0
try:
    LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3") or 3)
except ValueError:
    LLM_MAX_ATTEMPTS = 3
try:
    LLM_BACKOFF_BASE_MS = int(os.getenv("LLM_BACKOFF_BASE_MS", "1000") or 1000)
except ValueError:
    LLM_BACKOFF_BASE_MS = 1000
try:
    LLM_MAX_WORKERS = int(os.getenv("LLM_MAX_WORKERS", "8") or 8)
except ValueError:
    LLM_MAX_WORKERS = 8
if LLM_MAX_WORKERS < 1:
    LLM_MAX_WORKERS = 1

_EXECUTOR_LOCK = threading.Lock()
_EXECUTOR: Optional[ThreadPoolExecutor] = None


def shared_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            _EXECUTOR = ThreadPoolExecutor(max_workers=LLM_MAX_WORKERS, thread_name_prefix="llm-call")
        return _EXECUTOR


@dataclass
class RetryableOperation:
    """Attempt counter for one invoke(); delay after attempt n (1-based) is base * 2**(n-1)."""

    max_attempts: int
    base_delay_ms: int
    attempt: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def begin(self) -> int:
        self.attempt += 1
        return self.attempt

    def backoff_ms(self) -> int:
        return self.base_delay_ms * (2 ** max(0, self.attempt - 1))


class ResilientInvoker:
    """Wrap a ``prompt -> str`` callable with a per-attempt timeout and exponential backoff.

    A timed-out attempt is abandoned: its worker thread runs to completion
    (bounded by the client's own HTTP timeout) and the result is discarded.
    """

    def __init__(
        self,
        call: Callable[[str], str],
        timeout_s: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._call = call
        self.timeout_s = float(timeout_s if timeout_s is not None else LLM_TIMEOUT_SECS)
        self.max_attempts = max(1, int(max_attempts if max_attempts is not None else LLM_MAX_ATTEMPTS))
        self.base_delay_ms = max(0, int(base_delay_ms if base_delay_ms is not None else LLM_BACKOFF_BASE_MS))
        self._sleep = sleep
        self._executor = executor

    def invoke(self, prompt: str, label: str = "model") -> str:
        op = RetryableOperation(max_attempts=self.max_attempts, base_delay_ms=self.base_delay_ms)
        executor = self._executor or shared_executor()
        started = time.monotonic()
        last_exc: Optional[BaseException] = None
        timed_out = False

        while not op.exhausted:
            attempt = op.begin()
            t0 = time.monotonic()
            future = executor.submit(self._call, prompt)
            try:
                reply = future.result(timeout=self.timeout_s)
            except FutureTimeout:
                future.cancel()
                timed_out, last_exc = True, None
                log.warning(
                    "invoker.attempt: label=%s attempt=%d/%d outcome=timeout elapsed_ms=%d",
                    label, attempt, op.max_attempts, int((time.monotonic() - t0) * 1000),
                )
            except ConfigurationError:
                log.error("invoker.attempt: label=%s attempt=%d/%d outcome=configuration_error", label, attempt, op.max_attempts)
                raise
            except Exception as exc:
                timed_out, last_exc = False, exc
                log.warning(
                    "invoker.attempt: label=%s attempt=%d/%d outcome=error elapsed_ms=%d err=%r",
                    label, attempt, op.max_attempts, int((time.monotonic() - t0) * 1000), exc,
                )
            else:
                log.info(
                    "invoker.attempt: label=%s attempt=%d/%d outcome=ok elapsed_ms=%d chars=%d",
                    label, attempt, op.max_attempts, int((time.monotonic() - t0) * 1000), len(reply or ""),
                )
                return reply

            if not op.exhausted:
                delay_ms = op.backoff_ms()
                log.info("invoker.backoff: label=%s after_attempt=%d delay_ms=%d", label, attempt, delay_ms)
                self._sleep(delay_ms / 1000.0)

        total_ms = int((time.monotonic() - started) * 1000)
        if timed_out:
            log.error("invoker.failed: label=%s attempts=%d total_ms=%d reason=timeout", label, op.attempt, total_ms)
            raise ModelTimeoutError(
                f"The {label} call timed out after {op.attempt} attempts ({self.timeout_s:g}s each).",
                attempts=op.attempt,
                timeout_s=self.timeout_s,
            )
        log.error("invoker.failed: label=%s attempts=%d total_ms=%d reason=%r", label, op.attempt, total_ms, last_exc)
        raise ExhaustedRetriesError(
            f"The {label} call failed after {op.attempt} attempts.",
            attempts=op.attempt,
        ) from last_exc
