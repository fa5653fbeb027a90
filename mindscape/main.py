import logging
import math
import os
import threading
import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, Field, model_validator

from mindscape.errors import AdmissionDenied, InvalidInputError, PipelineError
from mindscape.flows import LIFEPATH_FIELDS, MIN_LIFEPATH_ANSWERS
from mindscape.input_sanitizer import label_answers
from mindscape.models import SubmissionRequest
from mindscape.pipeline import VisualizationPipeline, build_pipeline
from mindscape.render import ARTIFACT_CSP
from mindscape.storage import LocalObjectStore

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

MIN_DREAM_CHARS = 20

app = FastAPI(title="mindscape")

allow_origins = [o.strip() for o in os.getenv("ALLOW_ORIGINS", "*").split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After", "X-Request-ID"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "request: rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid, request.method, request.url.path, getattr(response, "status_code", "?"), dur_ms,
        )


class MindRequest(BaseModel):
    text: str = Field(..., min_length=1, description="Free text to map into a constellation of concepts")


class DreamRequest(BaseModel):
    dream: str = Field(..., min_length=MIN_DREAM_CHARS, description="Dream narrative")


class LifePathAnswers(BaseModel):
    values: Optional[str] = None
    fears: Optional[str] = None
    goals: Optional[str] = None
    strengths: Optional[str] = None
    relationships: Optional[str] = None
    challenges: Optional[str] = None
    dreams: Optional[str] = None
    legacy: Optional[str] = None

    @model_validator(mode="after")
    def _enough_answers(self) -> "LifePathAnswers":
        answered = sum(1 for f in LIFEPATH_FIELDS if (getattr(self, f) or "").strip())
        if answered < MIN_LIFEPATH_ANSWERS:
            raise ValueError(f"At least {MIN_LIFEPATH_ANSWERS} questions must be answered")
        return self


class LifePathRequest(BaseModel):
    answers: LifePathAnswers


_PIPELINE_LOCK = threading.Lock()
_PIPELINE: Optional[VisualizationPipeline] = None


def get_pipeline() -> VisualizationPipeline:
    global _PIPELINE
    with _PIPELINE_LOCK:
        if _PIPELINE is None:
            _PIPELINE = build_pipeline()
        return _PIPELINE


def client_identifier(request: Request) -> str:
    """Rate-limit bucket for the caller: proxy headers first, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (request.headers.get(header) or "").strip()
        if value:
            return value
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _rate_limit_headers(limit: int, remaining: int, reset_ts: float, *, limited: bool = False) -> Dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(int(math.ceil(reset_ts))),
    }
    if limited:
        headers["Retry-After"] = str(max(0, int(reset_ts - time.time())))
    return headers


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    headers: Dict[str, str] = {}
    if isinstance(exc, AdmissionDenied):
        headers = _rate_limit_headers(exc.limit, exc.remaining, exc.reset_at, limited=True)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for e in exc.errors():
        loc = [str(p) for p in e.get("loc", ()) if p != "body"]
        errors.append({"path": ".".join(loc) or "(root)", "message": str(e.get("msg", "invalid"))})
    first = errors[0]["message"] if errors else "Invalid request"
    err = InvalidInputError(f"Invalid request: {first}", errors=errors)
    return JSONResponse(status_code=err.status_code, content=err.to_payload())


def _visualize(flow: str, text: str, request: Request, pipeline: VisualizationPipeline) -> JSONResponse:
    client_id = client_identifier(request)
    decision = pipeline.admit(client_id)
    result = pipeline.run(flow, SubmissionRequest(text=text, client_id=client_id), admission=decision)
    return JSONResponse(result, headers=decision.headers())


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    from mindscape.llm_client import GeminiClient

    return GeminiClient().status()


@app.get("/ratelimit/status")
def ratelimit_status(pipeline: VisualizationPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    limiter = pipeline.limiter
    return {
        "backend": limiter.backend,
        "limit": limiter.max_requests,
        "window_seconds": limiter.window_seconds,
    }


@app.post("/visualize/mind")
def visualize_mind(req: MindRequest, request: Request, pipeline: VisualizationPipeline = Depends(get_pipeline)):
    return _visualize("mind", req.text, request, pipeline)


@app.post("/visualize/dream")
def visualize_dream(req: DreamRequest, request: Request, pipeline: VisualizationPipeline = Depends(get_pipeline)):
    return _visualize("dream", req.dream, request, pipeline)


@app.post("/visualize/lifepath")
def visualize_lifepath(req: LifePathRequest, request: Request, pipeline: VisualizationPipeline = Depends(get_pipeline)):
    body = label_answers(req.answers.model_dump(), LIFEPATH_FIELDS)
    return _visualize("lifepath", body, request, pipeline)


@app.get("/artifacts/{prefix}/{artifact_id}.html", response_class=HTMLResponse)
def serve_artifact(prefix: str, artifact_id: str, pipeline: VisualizationPipeline = Depends(get_pipeline)):
    store = getattr(pipeline.packager, "store", None)
    if not isinstance(store, LocalObjectStore):
        raise HTTPException(status_code=404, detail="Artifacts are not served by this instance")
    html = store.get(f"{prefix}/{artifact_id}.html")
    if html is None:
        raise HTTPException(status_code=404, detail="Artifact not found")
    return HTMLResponse(
        html,
        headers={
            "Content-Security-Policy": ARTIFACT_CSP,
            "X-Content-Type-Options": "nosniff",
            "Cache-Control": "public, max-age=31536000, immutable",
            "Referrer-Policy": "no-referrer",
        },
    )
