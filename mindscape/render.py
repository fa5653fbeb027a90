from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple
from urllib.parse import urlsplit

from jinja2 import Environment, FileSystemLoader, select_autoescape

TEMPLATE_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

# Jinja environment rooted at the package's templates/ directory
_env = Environment(
    loader=FileSystemLoader(TEMPLATE_DIR),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)

# Three.js r128 and its OrbitControls: the only external scripts an artifact may load
SCRIPT_SOURCES: Tuple[str, ...] = (
    "https://cdnjs.cloudflare.com/ajax/libs/three.js/r128/three.min.js",
    "https://cdn.jsdelivr.net/npm/three@0.128.0/examples/js/controls/OrbitControls.js",
)
REQUIRED_GLOBAL = "THREE"


def build_csp(script_sources: Tuple[str, ...] = SCRIPT_SOURCES) -> str:
    """Content-security-policy for an artifact: inline code plus the allow-listed script hosts, no network."""
    hosts = []
    for src in script_sources:
        parts = urlsplit(src)
        origin = f"{parts.scheme}://{parts.netloc}"
        if origin not in hosts:
            hosts.append(origin)
    directives = [
        "default-src 'none'",
        "script-src 'unsafe-inline' " + " ".join(hosts),
        "style-src 'unsafe-inline'",
        "img-src data: blob:",
        "connect-src 'none'",
        "frame-src 'none'",
        "object-src 'none'",
        "base-uri 'none'",
        "form-action 'none'",
    ]
    return "; ".join(directives)


ARTIFACT_CSP = build_csp()


@dataclass(frozen=True)
class Palette:
    primary: str
    secondary: str
    accent: str
    background: str = "#000000"


@dataclass(frozen=True)
class PageMeta:
    """Presentation details for the HTML shell around one artifact."""

    title: str
    loading_text: str
    subtitle: str = ""
    palette: Palette = field(default_factory=lambda: Palette("#C9A050", "#4A90D9", "#9050C9"))


def render_artifact_html(code: str, page: PageMeta) -> str:
    """Embed already-verified JavaScript into the locked-down artifact document.

    ``code`` is inserted verbatim into an inline script; everything else on
    the page, including model-derived titles, is autoescaped.
    """
    tpl = _env.get_template("artifact.html")
    return tpl.render(
        code=code,
        page=page,
        csp=ARTIFACT_CSP,
        script_sources=SCRIPT_SOURCES,
        required_global=REQUIRED_GLOBAL,
    )
