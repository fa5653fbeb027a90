"""Blocklist scanner for model-generated JavaScript.

The same signature list drives both passes. ``clean`` (pass 1) swaps every
match for an inert marker, repeating until nothing fires; ``verify`` (pass 2)
rescans the cleaned text and refuses it if anything still matches. Callers go
through ``sanitize``, which always runs both.

JavaScript treats comments as whitespace, so every gap inside a signature
also spans ``/* ... */`` and ``// ...`` comments: ``fetch/**/(url)`` is
still a fetch.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Pattern, Tuple

from mindscape.errors import UnsafeContentError

log = logging.getLogger(__name__)

# One whitespace char or one whole comment. The alternatives start on
# disjoint characters, a block comment cannot contain "*/" and a line comment
# always runs to the end of its line, so a run of them has exactly one parse.
_GAP_ATOM = r"(?:\s|/\*(?:[^*]|\*(?!/))*\*/|//[^\n]*(?=\n|$))"

MAX_CLEAN_PASSES = 4


@dataclass(frozen=True)
class Signature:
    name: str
    category: str
    pattern: Pattern[str]

    @property
    def marker(self) -> str:
        # "void 0" keeps the marker an expression, so it can never act as a callee
        return f"void 0 /* [blocked:{self.name}] */"


def _sig(name: str, category: str, regex: str, flags: int = 0) -> Signature:
    regex = regex.replace(r"\s*", _GAP_ATOM + "*").replace(r"\s+", _GAP_ATOM + "+")
    return Signature(name=name, category=category, pattern=re.compile(regex, flags))


_EVENT_NAMES = (
    r"(?:click|dblclick|load|unload|error|abort|focus|blur|change|input|submit|reset|select|"
    r"mouse\w*|pointer\w*|touch\w*|key\w*|drag\w*|drop|wheel|scroll|resize|message|toggle|"
    r"animation\w*|transition\w*|begin|end|contextmenu|beforeunload|hashchange|popstate)"
)

BLOCKLIST: Tuple[Signature, ...] = (
    # storage and cookies
    _sig("document-cookie", "storage", r"\bdocument\s*\.\s*cookie\b"),
    _sig("local-storage", "storage", r"\blocalStorage\b"),
    _sig("session-storage", "storage", r"\bsessionStorage\b"),
    _sig("indexed-db", "storage", r"\bindexedDB\b"),
    _sig("cookie-store", "storage", r"\bcookieStore\b"),
    # dynamic code evaluation; the bracket lookup goes first so it is caught whole
    _sig("evaluation-lookup", "eval", r"\[\s*['\"`]eval['\"`]\s*\]"),
    _sig("evaluation-call", "eval", r"\beval\b"),
    _sig("function-constructor", "eval", r"\bFunction\s*(?:\?\.\s*)?\("),
    _sig("constructor-call", "eval", r"\.\s*constructor\s*(?:\?\.\s*)?\(\s*['\"`]"),
    _sig("string-timer", "eval", r"\bset(?:Timeout|Interval)\s*\(\s*['\"`]"),
    _sig("base64-decode", "eval", r"\batob\b"),
    _sig("char-code-assembly", "eval", r"\bString\s*\.\s*fromCharCode\b"),
    # dynamic imports
    _sig("dynamic-import", "import", r"\bimport\s*\("),
    _sig("require-call", "import", r"\brequire\s*(?:\?\.\s*)?\("),
    _sig("import-scripts", "import", r"\bimportScripts\b"),
    _sig("worker", "import", r"\bnew\s+(?:Shared)?Worker\b"),
    # network primitives
    _sig("resource-fetching", "network", r"\bfetch\b"),
    _sig("xhr", "network", r"\bXMLHttpRequest\b"),
    _sig("websocket", "network", r"\bWebSocket\b"),
    _sig("event-source", "network", r"\bEventSource\b"),
    _sig("send-beacon", "network", r"\bsendBeacon\b"),
    _sig("post-message", "network", r"\bpostMessage\b"),
    _sig("rtc-peer", "network", r"\bRTCPeerConnection\b"),
    # DOM, script and frame injection
    _sig("inner-html", "dom", r"\b(?:inner|outer)HTML\b"),
    _sig("insert-adjacent-html", "dom", r"\binsertAdjacentHTML\b"),
    _sig("contextual-fragment", "dom", r"\bcreateContextualFragment\b"),
    _sig("dom-parser", "dom", r"\b(?:DOMParser|parseFromString|setHTMLUnsafe|parseHTMLUnsafe)\b"),
    _sig("document-write", "dom", r"\bdocument\s*\.\s*write(?:ln)?\b"),
    _sig("script-tag", "dom", r"<\s*/?\s*script\b", re.IGNORECASE),
    _sig("frame-tag", "dom", r"<\s*/?\s*(?:iframe|frame|object|embed)\b", re.IGNORECASE),
    _sig("create-script-element", "dom", r"\bcreateElement\s*\(\s*['\"`]\s*(?:script|iframe)\b", re.IGNORECASE),
    _sig("javascript-url", "dom", r"\bjavascript\s*:", re.IGNORECASE),
    _sig("inline-frame-document", "dom", r"\bsrcdoc\b", re.IGNORECASE),
    # navigation hijacking
    _sig("window-location", "navigation", r"\b(?:window|document|top|parent|self)\s*\.\s*location\b"),
    _sig("location-assign", "navigation", r"\blocation\s*\.\s*(?:href|assign|replace)\b"),
    _sig("window-open", "navigation", r"\bwindow\s*\.\s*open\b"),
    # inline handler attributes in markup, quoted or not; "el.onclick = fn"
    # property assignments, comparisons and arrow params are left alone
    _sig(
        "inline-event-handler",
        "handler",
        r"(?<![\w$.])on" + _EVENT_NAMES + r"\s*=(?![=>])",
        re.IGNORECASE,
    ),
)


_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*\r?\n?")


@dataclass(frozen=True)
class SanitizedCode:
    code: str
    fired: Dict[str, int] = field(default_factory=dict)


def strip_fences(code: str) -> str:
    """Drop markdown code fences the model wraps around its answer."""
    return _FENCE_RE.sub("", code or "").strip()


def scan(code: str) -> List[str]:
    """Names of every signature that matches ``code``."""
    return [sig.name for sig in BLOCKLIST if sig.pattern.search(code)]


def clean(code: str) -> Tuple[str, Dict[str, int]]:
    """Pass 1: replace each match with its marker until a full sweep replaces nothing.

    A replacement can join the text around it into a new match, so one sweep
    is not enough. Anything still matching after MAX_CLEAN_PASSES is left for
    the gate to reject.
    """
    fired: Dict[str, int] = {}
    for sweep in range(1, MAX_CLEAN_PASSES + 1):
        replaced = 0
        for sig in BLOCKLIST:
            code, n = sig.pattern.subn(sig.marker, code)
            if n:
                replaced += n
                fired[sig.name] = fired.get(sig.name, 0) + n
                log.warning(
                    "sanitizer.cleanup: signature=%s category=%s replaced=%d sweep=%d",
                    sig.name, sig.category, n, sweep,
                )
        if not replaced:
            break
    return code, fired


def verify(code: str) -> None:
    """Pass 2: fail closed if any signature still matches."""
    residual = scan(code)
    if residual:
        log.error("sanitizer.gate: rejected code residual_signatures=%s", ",".join(residual))
        raise UnsafeContentError(
            "Generated code contains potentially unsafe patterns.",
            signatures=residual,
            stage="code_verified",
        )


def sanitize(code: str) -> SanitizedCode:
    cleaned, fired = clean(strip_fences(code))
    verify(cleaned)
    return SanitizedCode(code=cleaned, fired=fired)
