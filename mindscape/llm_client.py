from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import requests

from mindscape.errors import ConfigurationError, TransientModelError

log = logging.getLogger(__name__)

GEMINI_API_KEY = (os.getenv("GOOGLE_AI_API_KEY") or os.getenv("GEMINI_API_KEY") or "").strip()
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash").strip()
GEMINI_ENDPOINT_TMPL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

try:
    TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.9"))
except ValueError:
    TEMPERATURE = 0.9
try:
    MAX_OUTPUT_TOKENS = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "8192"))
except ValueError:
    MAX_OUTPUT_TOKENS = 8192
try:
    LLM_TIMEOUT_SECS = float(os.getenv("LLM_TIMEOUT_SECS", "30"))
except ValueError:
    LLM_TIMEOUT_SECS = 30.0

# Markers Gemini uses when the key itself is the problem; retrying will not help
_KEY_ERROR_MARKERS = ("API_KEY_INVALID", "API key not valid", "API key expired", "PERMISSION_DENIED")


def extract_gemini_text(payload: Dict[str, Any]) -> Optional[str]:
    """Return the first non-empty text part of a generateContent response."""
    if not isinstance(payload, dict):
        return None
    for cand in payload.get("candidates") or []:
        if not isinstance(cand, dict):
            continue
        content = cand.get("content") or {}
        chunks = []
        for part in content.get("parts") or []:
            if not isinstance(part, dict):
                continue
            txt = part.get("text")
            if isinstance(txt, str):
                chunks.append(txt)
            elif isinstance(part.get("functionCall"), dict):
                chunks.append(json.dumps(part["functionCall"].get("args") or {}, ensure_ascii=False))
        text = "".join(chunks)
        if text.strip():
            return text
    return None


class GeminiClient:
    """One-shot text completion against the Gemini REST API.

    ``generate`` raises ConfigurationError for credential problems and
    TransientModelError for everything the invoker may retry.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout_s: Optional[float] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else GEMINI_API_KEY).strip()
        self.model = (model or GEMINI_MODEL).strip()
        self.timeout_s = float(timeout_s if timeout_s is not None else LLM_TIMEOUT_SECS)
        self.temperature = TEMPERATURE if temperature is None else float(temperature)
        self.max_output_tokens = int(max_output_tokens or MAX_OUTPUT_TOKENS)

    @property
    def has_token(self) -> bool:
        return bool(self.api_key)

    @property
    def endpoint(self) -> str:
        return GEMINI_ENDPOINT_TMPL.format(model=self.model)

    def status(self) -> Dict[str, Any]:
        return {"provider": "gemini", "model": self.model, "has_token": self.has_token}

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("GOOGLE_AI_API_KEY is not configured.")

    def generate(self, prompt: str) -> str:
        self.ensure_configured()
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }
        try:
            resp = requests.post(
                self.endpoint,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise TransientModelError(f"Gemini request error: {exc!r}") from exc

        if resp.status_code != 200:
            try:
                msg = resp.text[:400]
            except Exception:
                msg = str(resp.status_code)
            if resp.status_code in (401, 403) or any(m in msg for m in _KEY_ERROR_MARKERS):
                log.error("llm.generate: Gemini rejected credentials HTTP %s", resp.status_code)
                raise ConfigurationError("Invalid or missing Google AI API key.")
            raise TransientModelError(f"Gemini HTTP {resp.status_code}: {msg}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientModelError("Gemini returned a non-JSON body") from exc

        text = extract_gemini_text(data)
        if not text:
            block = (data.get("promptFeedback") or {}).get("blockReason") if isinstance(data, dict) else None
            if block:
                log.warning("llm.generate: prompt blocked by provider reason=%s", block)
            raise TransientModelError(f"Gemini returned no text (blockReason={block})")
        return text

    __call__ = generate
