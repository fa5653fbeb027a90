from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from mindscape.errors import MalformedResponseError
from mindscape.models import DreamAnalysis, LifePathAnalysis, MindAnalysis

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def balanced_json_slice(s: str) -> Optional[str]:
    """Return the first balanced ``{...}`` region of ``s``, ignoring braces inside JSON strings."""
    in_str = False
    esc = False
    depth = 0
    start_idx = -1
    for i, ch in enumerate(s):
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            if depth > 0:
                in_str = True
        elif ch == "{":
            if depth == 0:
                start_idx = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                return s[start_idx : i + 1]
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull the JSON object out of a free-text model reply.

    The model may wrap the object in prose or markdown fences. No object, or
    an object that will not parse, is fatal: a malformed reply is not assumed
    to be transient.
    """
    candidate = balanced_json_slice(text or "")
    if candidate is None:
        raise MalformedResponseError("Failed to parse analysis response: no JSON object found")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError:
        # Tolerate the two slips models make most: trailing commas and smart quotes
        repaired = re.sub(r",\s*([}\]])", r"\1", candidate)
        repaired = repaired.replace("“", '"').replace("”", '"')
        try:
            data = json.loads(repaired)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Failed to parse analysis response: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError("Failed to parse analysis response: top level is not an object")
    return data


def collect_errors(exc: ValidationError) -> List[Dict[str, str]]:
    """Flatten a pydantic ValidationError into ``{"path", "message"}`` dicts."""
    errors: List[Dict[str, str]] = []
    for e in exc.errors():
        loc = ".".join(str(p) for p in e.get("loc", ())) or "(root)"
        msg = e.get("msg", "invalid")
        if e.get("type") == "missing":
            msg = f"required property '{loc.split('.')[-1]}' is missing"
        errors.append({"path": loc, "message": msg})
    return errors


def _validate(model_cls: Type[M], data: Dict[str, Any], label: str) -> M:
    try:
        return model_cls.model_validate(data)
    except ValidationError as ve:
        errors = collect_errors(ve)
        summary = "; ".join(f"{e['path']}: {e['message']}" for e in errors[:5])
        log.warning("parsing.validate: %s analysis rejected errors=%d first=%s", label, len(errors), summary)
        raise MalformedResponseError(f"Invalid {label} analysis: {summary}") from ve


def parse_mind_analysis(raw_text: str, drop_dangling: bool = True) -> MindAnalysis:
    analysis = _validate(MindAnalysis, extract_json_object(raw_text), "mind")
    if not drop_dangling:
        return analysis
    names = set(analysis.concept_names())
    kept = [c for c in analysis.connections if c.source in names and c.target in names]
    dropped = len(analysis.connections) - len(kept)
    if dropped:
        log.warning("parsing.mind: dropped %d connection(s) referencing unknown concepts", dropped)
        analysis = analysis.model_copy(update={"connections": kept})
    return analysis


def parse_lifepath_analysis(raw_text: str) -> LifePathAnalysis:
    return _validate(LifePathAnalysis, extract_json_object(raw_text), "life path")


def parse_dream_analysis(raw_text: str) -> DreamAnalysis:
    return _validate(DreamAnalysis, extract_json_object(raw_text), "dream")
