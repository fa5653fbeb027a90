"""The three visualization flows that share the pipeline.

A flow only decides what the pipeline says to the model and how the result
looks: the prompts, the analysis contract, the palette, the HTML shell text
and the summary returned to the client. Admission, retries, sanitizing and
storage are the same for all of them.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Tuple

from mindscape import llm_parsing, llm_prompts
from mindscape.input_sanitizer import MAX_ANSWER_CHARS, MAX_INPUT_CHARS
from mindscape.render import PageMeta, Palette

try:
    MAX_DREAM_CHARS = int(os.getenv("MAX_DREAM_CHARS", "5000") or 5000)
except ValueError:
    MAX_DREAM_CHARS = 5000

LIFEPATH_FIELDS: Tuple[str, ...] = (
    "values",
    "fears",
    "goals",
    "strengths",
    "relationships",
    "challenges",
    "dreams",
    "legacy",
)
MIN_LIFEPATH_ANSWERS = 5

ARCHETYPE_PALETTES: Dict[str, Dict[str, str]] = {
    "Warrior": {"primary": "#C9A050", "secondary": "#D94A4A", "accent": "#FF6B35", "glow": "#FFA500"},
    "King": {"primary": "#C9A050", "secondary": "#9050C9", "accent": "#FFD700", "glow": "#DAA520"},
    "Magician": {"primary": "#C9A050", "secondary": "#4A90D9", "accent": "#6A5ACD", "glow": "#7B68EE"},
    "Lover": {"primary": "#C9A050", "secondary": "#50C9A0", "accent": "#FF69B4", "glow": "#FF1493"},
}

PHASE_CHARACTERISTICS: Dict[str, Dict[str, Any]] = {
    "Awakening": {"particleCount": 100, "pathBrightness": 0.5, "description": "Beginning the journey"},
    "Building": {"particleCount": 200, "pathBrightness": 0.7, "description": "Constructing foundations"},
    "Mastering": {"particleCount": 300, "pathBrightness": 0.85, "description": "Refining expertise"},
    "Transcending": {"particleCount": 400, "pathBrightness": 1.0, "description": "Beyond limitations"},
}

DREAM_PALETTES: Dict[str, Dict[str, str]] = {
    "peaceful": {"primary": "#50C9A0", "secondary": "#4A90D9", "accent": "#C9A050", "fog": "#1a2f2f"},
    "anxious": {"primary": "#D94A4A", "secondary": "#C9A050", "accent": "#9050C9", "fog": "#2f1a1a"},
    "exciting": {"primary": "#C9A050", "secondary": "#D9904A", "accent": "#50C9A0", "fog": "#2f2a1a"},
    "melancholic": {"primary": "#4A90D9", "secondary": "#9050C9", "accent": "#50C9A0", "fog": "#1a1a2f"},
    "transformative": {"primary": "#9050C9", "secondary": "#C9A050", "accent": "#4A90D9", "fog": "#2a1a2f"},
    "mysterious": {"primary": "#6A5ACD", "secondary": "#4A90D9", "accent": "#C9A050", "fog": "#1a1a2a"},
}


def _truncate(s: str, n: int = 80) -> str:
    return s if len(s) <= n else s[: n - 1].rstrip() + "…"


@dataclass(frozen=True)
class Flow:
    name: str
    prefix: str
    delimiter: str
    max_chars: int
    analysis_prompt: Callable[[str], str]
    parse: Callable[[str], Any]
    viz_prompt: Callable[[Any], str]
    page: Callable[[Any], PageMeta]
    summary: Callable[[Any], Dict[str, Any]]


# -- mind -------------------------------------------------------------------


def _mind_palette(analysis) -> Dict[str, str]:
    return ARCHETYPE_PALETTES.get(analysis.dominantArchetype, ARCHETYPE_PALETTES["Magician"])


def _mind_viz(analysis) -> str:
    return llm_prompts.build_mind_viz_prompt(analysis, _mind_palette(analysis))


def _mind_page(analysis) -> PageMeta:
    p = _mind_palette(analysis)
    return PageMeta(
        title="Mind Visualization",
        loading_text="Rendering your mind...",
        subtitle=f"{analysis.dominantArchetype} | {len(analysis.concepts)} concepts",
        palette=Palette(p["primary"], p["secondary"], p["accent"], "#000000"),
    )


def _mind_summary(analysis) -> Dict[str, Any]:
    return {
        "dominantArchetype": analysis.dominantArchetype,
        "insights": list(analysis.insights),
        "recommendedMeditation": analysis.recommendedMeditation,
        "conceptCount": len(analysis.concepts),
        "connectionCount": len(analysis.connections),
    }


# -- life path --------------------------------------------------------------


def _lifepath_palette(analysis) -> Dict[str, str]:
    return ARCHETYPE_PALETTES.get(analysis.archetype, ARCHETYPE_PALETTES["Magician"])


def _lifepath_viz(analysis) -> str:
    phase = PHASE_CHARACTERISTICS.get(analysis.currentPhase, PHASE_CHARACTERISTICS["Awakening"])
    return llm_prompts.build_lifepath_viz_prompt(analysis, _lifepath_palette(analysis), phase)


def _lifepath_page(analysis) -> PageMeta:
    p = _lifepath_palette(analysis)
    return PageMeta(
        title=f"Life Path - {analysis.archetype} {analysis.currentPhase}",
        loading_text="Mapping your life path...",
        subtitle=f"{analysis.archetype} | {analysis.currentPhase}",
        palette=Palette(p["primary"], p["secondary"], p["accent"], "#000000"),
    )


def _lifepath_summary(analysis) -> Dict[str, Any]:
    return {
        "archetype": analysis.archetype,
        "archetypeDescription": analysis.archetypeDescription,
        "currentPhase": analysis.currentPhase,
        "lifeThemes": list(analysis.lifeThemes),
        "strengths": list(analysis.strengths),
        "growthAreas": list(analysis.growthAreas),
        "potentialPaths": [p.model_dump() for p in analysis.potentialPaths],
        "affirmation": analysis.affirmation,
        "recommendedMeditation": analysis.recommendedMeditation,
    }


# -- dream ------------------------------------------------------------------


def _dream_palette(analysis) -> Dict[str, str]:
    return DREAM_PALETTES.get(analysis.emotionalTone, DREAM_PALETTES["mysterious"])


def _dream_viz(analysis) -> str:
    return llm_prompts.build_dream_viz_prompt(analysis, _dream_palette(analysis))


def _dream_page(analysis) -> PageMeta:
    p = _dream_palette(analysis)
    return PageMeta(
        title=_truncate(f"Dream Visualization - {analysis.themes[0]}"),
        loading_text="Entering your dream...",
        subtitle=_truncate(" | ".join(analysis.themes), 160),
        palette=Palette(p["primary"], p["secondary"], p["accent"], p["fog"]),
    )


def _dream_summary(analysis) -> Dict[str, Any]:
    return {
        "symbols": [s.model_dump() for s in analysis.symbols],
        "themes": list(analysis.themes),
        "emotionalTone": analysis.emotionalTone,
        "interpretation": analysis.interpretation,
        "message": analysis.message,
        "recommendedMeditation": analysis.recommendedMeditation,
    }


FLOWS: Mapping[str, Flow] = {
    "mind": Flow(
        name="mind",
        prefix="visualizations",
        delimiter="USER_TEXT",
        max_chars=MAX_INPUT_CHARS,
        analysis_prompt=llm_prompts.build_mind_analysis_prompt,
        parse=llm_parsing.parse_mind_analysis,
        viz_prompt=_mind_viz,
        page=_mind_page,
        summary=_mind_summary,
    ),
    "lifepath": Flow(
        name="lifepath",
        prefix="lifepaths",
        delimiter="QUIZ_ANSWERS",
        # labels and blank-line separators on top of the per-answer bound
        max_chars=len(LIFEPATH_FIELDS) * (MAX_ANSWER_CHARS + 32),
        analysis_prompt=llm_prompts.build_lifepath_analysis_prompt,
        parse=llm_parsing.parse_lifepath_analysis,
        viz_prompt=_lifepath_viz,
        page=_lifepath_page,
        summary=_lifepath_summary,
    ),
    "dream": Flow(
        name="dream",
        prefix="dreams",
        delimiter="USER_DREAM",
        max_chars=MAX_DREAM_CHARS,
        analysis_prompt=llm_prompts.build_dream_analysis_prompt,
        parse=llm_parsing.parse_dream_analysis,
        viz_prompt=_dream_viz,
        page=_dream_page,
        summary=_dream_summary,
    ),
}