from __future__ import annotations

import enum
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union

from mindscape import code_sanitizer
from mindscape.errors import AdmissionDenied, InvalidInputError, MalformedResponseError, PipelineError
from mindscape.flows import FLOWS, Flow
from mindscape.input_sanitizer import sanitize_text, wrap_untrusted
from mindscape.models import AdmissionDecision, SubmissionRequest

log = logging.getLogger(__name__)


class PipelineState(str, enum.Enum):
    ADMITTED = "admitted"
    SANITIZED = "sanitized"
    ANALYZED = "analyzed"
    CODE_GENERATED = "code_generated"
    CODE_VERIFIED = "code_verified"
    PACKAGED = "packaged"
    COMPLETED = "completed"
    FAILED = "failed"


class VisualizationPipeline:
    """Runs one submission through admission, analysis, code generation, the sanitizer gate and packaging.

    Every step either advances the run to the next state or raises a
    PipelineError; the pipeline stamps the failing step on the error and
    re-raises it. Retrying is left to the invokers.
    """

    def __init__(
        self,
        limiter,
        analysis_invoker,
        code_invoker,
        packager,
        flows: Mapping[str, Flow] = FLOWS,
        preflight: Optional[Callable[[], None]] = None,
    ) -> None:
        self.limiter = limiter
        self.analysis_invoker = analysis_invoker
        self.code_invoker = code_invoker
        self.packager = packager
        self.flows = flows
        self._preflight = preflight

    def _flow(self, flow: Union[str, Flow]) -> Flow:
        if isinstance(flow, Flow):
            return flow
        try:
            return self.flows[flow]
        except KeyError:
            raise InvalidInputError(f"Unknown visualization flow '{flow}'", stage="admitted") from None

    def admit(self, client_id: str) -> AdmissionDecision:
        """Check credentials, then charge the client's rate-limit budget."""
        if self._preflight is not None:
            self._preflight()
        decision = self.limiter.admit(client_id)
        if not decision.allowed:
            log.info("pipeline.admit: denied client=%s reset_at=%.0f", client_id, decision.reset_at)
            raise AdmissionDenied(decision.limit, decision.remaining, decision.reset_at)
        return decision

    def run(
        self,
        flow: Union[str, Flow],
        submission: SubmissionRequest,
        admission: Optional[AdmissionDecision] = None,
    ) -> Dict[str, Any]:
        """Process one submission; pass ``admission`` when the caller already went through admit()."""
        chosen = self._flow(flow)
        run_id = uuid.uuid4().hex[:8]
        started = time.monotonic()
        step = PipelineState.ADMITTED

        def advance(state: PipelineState, **detail: Any) -> None:
            extra = " ".join(f"{k}={v}" for k, v in detail.items())
            log.info(
                "pipeline.state: run=%s flow=%s state=%s elapsed_ms=%d %s",
                run_id, chosen.name, state.value, int((time.monotonic() - started) * 1000), extra,
            )

        try:
            if admission is None:
                admission = self.admit(submission.client_id)
            advance(PipelineState.ADMITTED, remaining=admission.remaining, backend=admission.backend)

            step = PipelineState.SANITIZED
            if not isinstance(submission.text, str) or not submission.text.strip():
                raise InvalidInputError("Text must not be empty")
            safe_text = sanitize_text(submission.text.strip(), chosen.max_chars)
            wrapped = wrap_untrusted(safe_text, chosen.delimiter)
            advance(step, chars=len(safe_text))

            step = PipelineState.ANALYZED
            raw_analysis = self.analysis_invoker.invoke(chosen.analysis_prompt(wrapped), label=f"{chosen.name}.analysis")
            analysis = chosen.parse(raw_analysis)
            advance(step)

            step = PipelineState.CODE_GENERATED
            raw_code = self.code_invoker.invoke(chosen.viz_prompt(analysis), label=f"{chosen.name}.code")
            if not code_sanitizer.strip_fences(raw_code):
                raise MalformedResponseError("The model returned no visualization code")
            advance(step, chars=len(raw_code))

            step = PipelineState.CODE_VERIFIED
            safe_code = code_sanitizer.sanitize(raw_code)
            advance(step, replaced=sum(safe_code.fired.values()))

            step = PipelineState.PACKAGED
            artifact = self.packager.package(safe_code, chosen.page(analysis), chosen.prefix)
            advance(step, id=artifact.id)
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = step.value
            log.warning(
                "pipeline.state: run=%s flow=%s state=%s stage=%s kind=%s elapsed_ms=%d err=%s",
                run_id, chosen.name, PipelineState.FAILED.value, exc.stage, exc.kind,
                int((time.monotonic() - started) * 1000), exc.message,
            )
            raise
        except Exception as exc:
            log.exception(
                "pipeline.state: run=%s flow=%s state=%s stage=%s kind=internal",
                run_id, chosen.name, PipelineState.FAILED.value, step.value,
            )
            raise PipelineError(f"Failed to create {chosen.name} visualization", stage=step.value) from exc

        elapsed_ms = int((time.monotonic() - started) * 1000)
        advance(PipelineState.COMPLETED, total_ms=elapsed_ms)
        return {
            "id": artifact.id,
            "url": artifact.url,
            "analysis": chosen.summary(analysis),
            "metadata": {
                "processingTimeMs": elapsed_ms,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }


def build_pipeline() -> VisualizationPipeline:
    """Pipeline wired from the environment: Gemini, the configured limiter and object store."""
    from mindscape.invoker import ResilientInvoker
    from mindscape.llm_client import GeminiClient
    from mindscape.packager import ArtifactPackager
    from mindscape.ratelimit import build_rate_limiter
    from mindscape.storage import build_object_store

    client = GeminiClient()
    return VisualizationPipeline(
        limiter=build_rate_limiter(),
        analysis_invoker=ResilientInvoker(client.generate),
        code_invoker=ResilientInvoker(client.generate),
        packager=ArtifactPackager(build_object_store()),
        preflight=client.ensure_configured,
    )
