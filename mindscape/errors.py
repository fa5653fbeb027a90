from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for every failure the visualization pipeline reports to a caller.

    Subclasses are the closed error taxonomy: the orchestrator and the HTTP
    layer branch on the class (or its ``kind`` tag), never on the message.
    """

    kind: str = "internal"
    status_code: int = 500
    recoverable: bool = False
    default_hint: str = "Please try again later."

    def __init__(self, message: str, *, hint: Optional[str] = None, stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint or self.default_hint
        self.stage = stage

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "hint": self.hint,
            "recoverable": self.recoverable,
            "kind": self.kind,
        }


class InvalidInputError(PipelineError):
    kind = "invalid_input"
    status_code = 400
    recoverable = True
    default_hint = "Check the submitted text and try again."

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, str]]] = None, **kw: Any):
        super().__init__(message, **kw)
        self.errors = errors or []

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class AdmissionDenied(PipelineError):
    kind = "admission_denied"
    status_code = 429
    recoverable = True

    def __init__(self, limit: int, remaining: int, reset_at: float, *, now: Optional[float] = None):
        wait_seconds = max(0, int(round(reset_at - (now if now is not None else time.time()))))
        minutes = max(1, -(-wait_seconds // 60))
        super().__init__(
            f"Rate limit exceeded ({limit} requests per window).",
            hint=f"Try again in {minutes} minute{'s' if minutes != 1 else ''}.",
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_at = reset_at
        self.retry_after_seconds = wait_seconds

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retryAfter"] = datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()
        payload["retryAfterSeconds"] = self.retry_after_seconds
        return payload


class ConfigurationError(PipelineError):
    kind = "configuration"
    status_code = 503
    recoverable = False
    default_hint = "The service is misconfigured; an operator needs to set GOOGLE_AI_API_KEY."


class ModelTimeoutError(PipelineError):
    kind = "timeout"
    status_code = 504
    recoverable = True
    default_hint = "The model took too long to respond. Try again, ideally with a shorter text."

    def __init__(self, message: str, *, attempts: int = 1, timeout_s: float = 0.0, **kw: Any):
        super().__init__(message, **kw)
        self.attempts = attempts
        self.timeout_s = timeout_s


class ExhaustedRetriesError(PipelineError):
    kind = "exhausted_retries"
    status_code = 502
    recoverable = True
    default_hint = "The model service is unstable right now. Try again in a moment."

    def __init__(self, message: str, *, attempts: int = 1, **kw: Any):
        super().__init__(message, **kw)
        self.attempts = attempts


class MalformedResponseError(PipelineError):
    kind = "malformed_response"
    status_code = 502
    recoverable = True
    default_hint = "The model returned an unreadable analysis. Submitting again usually works."


class UnsafeContentError(PipelineError):
    kind = "unsafe_content"
    status_code = 500
    recoverable = True
    default_hint = "Generated visualization failed safety checks. Please try again."

    def __init__(self, message: str, *, signatures: Optional[List[str]] = None, **kw: Any):
        super().__init__(message, **kw)
        self.signatures = list(signatures or [])


class StorageError(PipelineError):
    kind = "storage"
    status_code = 503
    recoverable = True
    default_hint = "The visualization could not be saved. Try again in a moment."


class TransientModelError(Exception):
    """A single failed model call (transport, HTTP status, empty reply). Retried by the invoker."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
