from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from mindscape.models import DREAM_MEDITATIONS, LIFEPATH_MEDITATIONS, MIND_MEDITATIONS

# Shared by every code-generation prompt; mirrors what the sanitizer gate will strip anyway
_SANDBOX_RULES = (
    "SANDBOX RULES (the code runs inside a locked-down page):\n"
    "- THREE and THREE.OrbitControls are already loaded as globals; do not import or require anything\n"
    "- Create the renderer yourself and append renderer.domElement to document.body\n"
    "- No network access: no fetch, XMLHttpRequest, WebSocket, postMessage or sendBeacon\n"
    "- No storage: no cookies, localStorage, sessionStorage or indexedDB\n"
    "- No eval, Function constructors, string timers, atob or String.fromCharCode\n"
    "- No innerHTML, outerHTML, document.write, script or iframe elements\n"
    "- Do not navigate: no window.location, location.href or window.open\n"
    "- Handle window resize with window.addEventListener('resize', ...)\n"
)

_CODE_ONLY = "Return ONLY the JavaScript code, no markdown or explanations."


def _json_block(analysis: Any) -> str:
    data = analysis.model_dump(by_alias=True) if hasattr(analysis, "model_dump") else analysis
    return json.dumps(data, ensure_ascii=False, indent=2)


def _palette_lines(palette: Mapping[str, str], labels: Optional[Mapping[str, str]] = None) -> str:
    return "\n".join(f"- {(labels or {}).get(k, k.title())}: {v}" for k, v in palette.items())


# -- mind -------------------------------------------------------------------

MIND_ANALYSIS_SHAPE = (
    "{\n"
    '  "concepts": [{"name": "string", "importance": 1-10, "category": "analytical|emotional|growth|creative", '
    '"x": -5 to 5, "y": -5 to 5, "z": -5 to 5}],\n'
    '  "connections": [{"from": "concept name", "to": "concept name", "strength": 1-10}],\n'
    '  "dominantArchetype": "Warrior|King|Magician|Lover",\n'
    '  "insights": ["insight 1", "insight 2", "insight 3"],\n'
    f'  "recommendedMeditation": "meditation slug from: {", ".join(MIND_MEDITATIONS)}"\n'
    "}"
)


def build_mind_analysis_prompt(wrapped_text: str) -> str:
    return (
        "Analyze this text and return a JSON object with the following structure:\n"
        f"{MIND_ANALYSIS_SHAPE}\n\n"
        "Guidelines:\n"
        "- Extract 5-15 key concepts; importance reflects how central each one is\n"
        "- Every connection must use concept names exactly as listed in concepts\n"
        "- Spread positions through the space; related concepts sit closer together\n\n"
        f"{wrapped_text}\n"
        "Return ONLY valid JSON."
    )


def build_mind_viz_prompt(analysis: Any, palette: Mapping[str, str]) -> str:
    return (
        "You are an expert Three.js developer creating 3D mind map visualizations.\n\n"
        "Generate JavaScript code for an interactive constellation of thoughts based on this analysis:\n"
        f"{_json_block(analysis)}\n\n"
        "COLOR PALETTE:\n"
        f"{_palette_lines(palette)}\n\n"
        "REQUIREMENTS:\n"
        "1. One glowing sphere per concept at its (x, y, z) position, radius scaled by importance\n"
        "2. Colour each sphere by category: analytical blue, emotional red, growth green, creative purple\n"
        "3. Lines between connected concepts, opacity scaled by strength\n"
        "4. Gentle pulsing of the spheres and slow rotation of the whole constellation\n"
        "5. A starfield background and subtle fog for depth\n\n"
        "TECHNICAL REQUIREMENTS:\n"
        "- Use Three.js r128 syntax\n"
        "- Include OrbitControls for user interaction\n"
        "- Set up ambient plus point lights\n"
        "- Animate using requestAnimationFrame\n\n"
        f"{_SANDBOX_RULES}\n"
        f"{_CODE_ONLY}"
    )


# -- life path --------------------------------------------------------------

LIFEPATH_ANALYSIS_SHAPE = (
    "{\n"
    '  "archetype": "Warrior|King|Magician|Lover",\n'
    '  "archetypeDescription": "2-3 sentences describing how this archetype manifests in their life",\n'
    '  "currentPhase": "Awakening|Building|Mastering|Transcending",\n'
    '  "lifeThemes": ["theme1", "theme2", "theme3"],\n'
    '  "strengths": ["strength1", "strength2", "strength3"],\n'
    '  "growthAreas": ["area1", "area2"],\n'
    '  "potentialPaths": [{"name": "path name", "description": "what this path involves and where it leads", '
    '"alignment": 1-10}],\n'
    '  "affirmation": "personalized daily affirmation based on their archetype and journey",\n'
    f'  "recommendedMeditation": "{"|".join(LIFEPATH_MEDITATIONS)}"\n'
    "}"
)


def build_lifepath_analysis_prompt(wrapped_answers: str) -> str:
    return (
        "You are a life path oracle and archetypal analyst. "
        "Analyze these personality quiz answers and return a JSON object with the following structure:\n"
        f"{LIFEPATH_ANALYSIS_SHAPE}\n\n"
        "Guidelines for analysis:\n"
        "- Warrior: action-oriented, protector, courageous, disciplined\n"
        "- King: leadership, order, blessing others, responsibility\n"
        "- Magician: wisdom, transformation, insight, technology and knowledge\n"
        "- Lover: connection, passion, aesthetics, relationships\n"
        "- Awakening: just beginning to understand their path\n"
        "- Building: actively creating foundation and skills\n"
        "- Mastering: refining and deepening expertise\n"
        "- Transcending: beyond personal to serving a larger purpose\n"
        "- Provide 3-5 potential paths with varying alignment scores\n"
        "- Match the meditation to their current needs\n\n"
        f"{wrapped_answers}\n"
        "Return ONLY valid JSON."
    )


def build_lifepath_viz_prompt(analysis: Any, palette: Mapping[str, str], phase: Mapping[str, Any]) -> str:
    archetype = getattr(analysis, "archetype", "Magician")
    current = getattr(analysis, "currentPhase", "Awakening")
    return (
        "You are an expert Three.js developer creating 3D life path visualizations.\n\n"
        "Generate JavaScript code for a cosmic life path visualization based on this analysis:\n"
        f"{_json_block(analysis)}\n\n"
        f"COLOR PALETTE (based on {archetype} archetype):\n"
        f"{_palette_lines(palette, {'primary': 'Primary (main path)'})}\n\n"
        f"PHASE INFO ({current}):\n"
        f"- Particle count: {phase['particleCount']}\n"
        f"- Path brightness: {phase['pathBrightness']}\n\n"
        "REQUIREMENTS:\n"
        "1. A branching path system in 3D space representing their life journey\n"
        "2. Main golden path flowing from past to present to future\n"
        "3. Current position marked with a glowing, pulsing sphere\n"
        "4. Potential paths as coloured trails branching from the current position, intensity by alignment (1-10)\n"
        f"5. {phase['particleCount']} ambient particles floating around representing opportunities\n"
        "6. Deep space background with 500+ small white stars\n\n"
        "TECHNICAL REQUIREMENTS:\n"
        "- Use Three.js r128 syntax\n"
        "- Include OrbitControls for user interaction\n"
        "- Smooth curves with CatmullRomCurve3 and TubeGeometry for paths\n"
        "- Emissive materials and point lights for glow\n"
        "- Animate using requestAnimationFrame\n\n"
        f"{_SANDBOX_RULES}\n"
        f"{_CODE_ONLY}"
    )


# -- dream ------------------------------------------------------------------

DREAM_ANALYSIS_SHAPE = (
    "{\n"
    '  "symbols": [{"name": "symbol name", "meaning": "what this symbol represents in the dreamer\'s psyche", '
    '"archetype": "Shadow|Anima|Animus|Self|Persona"}],\n'
    '  "themes": ["theme1", "theme2", "theme3"],\n'
    '  "emotionalTone": "peaceful|anxious|exciting|melancholic|transformative|mysterious",\n'
    '  "interpretation": "2-3 sentence interpretation of the dream\'s meaning",\n'
    '  "message": "The subconscious message or insight the dream is trying to convey",\n'
    f'  "recommendedMeditation": "{"|".join(DREAM_MEDITATIONS)}"\n'
    "}"
)


def build_dream_analysis_prompt(wrapped_dream: str) -> str:
    return (
        "You are a Jungian dream analyst. Analyze this dream and return a JSON object with the following structure:\n"
        f"{DREAM_ANALYSIS_SHAPE}\n\n"
        "Guidelines for analysis:\n"
        "- Identify 3-7 key symbols from the dream\n"
        "- Each symbol should connect to one of Jung's major archetypes\n"
        "- Shadow: repressed aspects, dark figures, enemies\n"
        "- Anima/Animus: opposite gender figures, love interests, guides\n"
        "- Self: wise figures, mandalas, wholeness symbols\n"
        "- Persona: masks, clothing, social roles\n"
        "- Message should be actionable wisdom\n\n"
        f"{wrapped_dream}\n"
        "Return ONLY valid JSON."
    )


def build_dream_viz_prompt(analysis: Any, palette: Mapping[str, str]) -> str:
    tone = getattr(analysis, "emotionalTone", "mysterious")
    return (
        "You are an expert Three.js developer creating surreal dream visualizations.\n\n"
        "Generate JavaScript code for a dreamlike 3D visualization based on this dream analysis:\n"
        f"{_json_block(analysis)}\n\n"
        f"COLOR PALETTE (based on {tone} emotional tone):\n"
        f"{_palette_lines(palette)}\n\n"
        "REQUIREMENTS:\n"
        "1. Floating abstract shapes (spheres, tori, icosahedrons) for each dream symbol\n"
        "2. Particle systems and volumetric fog in the fog colour\n"
        "3. Slow, dreamlike camera movement around the centre\n"
        "4. Objects gently float, rotate and pulse\n"
        "5. Connecting ribbons between related symbols\n"
        "6. Emissive materials for ethereal glow\n\n"
        "TECHNICAL REQUIREMENTS:\n"
        "- Use Three.js r128 syntax\n"
        "- Include OrbitControls for user interaction\n"
        "- Ambient plus point lights\n"
        "- Animate using requestAnimationFrame\n\n"
        f"{_SANDBOX_RULES}\n"
        f"{_CODE_ONLY}"
    )

