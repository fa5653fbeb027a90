import itertools
import json
import time

import pytest

from mindscape.packager import ArtifactPackager
from mindscape.pipeline import VisualizationPipeline
from mindscape.ratelimit import MemoryWindowStore, RateLimiter


class FakeClock:
    def __init__(self, t: float = None):
        self.t = time.time() if t is None else t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class ScriptedInvoker:
    """Stands in for ResilientInvoker: replays canned replies (or raises canned errors) in order."""

    def __init__(self, *replies, repeat_last: bool = False):
        self.replies = list(replies)
        self.repeat_last = repeat_last
        self.calls = []

    def invoke(self, prompt, label="model"):
        self.calls.append((label, prompt))
        if self.repeat_last and len(self.replies) == 1:
            reply = self.replies[0]
        else:
            reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


class RecordingStore:
    name = "recording"

    def __init__(self):
        self.puts = {}

    def put(self, key, content, content_type="text/html"):
        self.puts[key] = (content, content_type)
        return f"https://blob.test/{key}"


MIND_REPLY = json.dumps(
    {
        "concepts": [
            {"name": "Flight", "importance": 9, "category": "creative", "x": 0, "y": 2, "z": 0},
            {"name": "Ocean", "importance": 7, "category": "emotional", "x": -3, "y": -1, "z": 1},
            {"name": "Twilight", "importance": 5, "category": "growth", "x": 3, "y": 0, "z": -2},
        ],
        "connections": [
            {"from": "Flight", "to": "Ocean", "strength": 8},
            {"from": "Ocean", "to": "Twilight", "strength": 6},
        ],
        "dominantArchetype": "Magician",
        "insights": ["You seek freedom", "Depth calls to you", "Transitions feel natural"],
        "recommendedMeditation": "deep-focus",
    }
)

DREAM_REPLY = json.dumps(
    {
        "symbols": [{"name": "Door", "meaning": "A threshold", "archetype": "Self"}],
        "themes": ["change", "curiosity", "fear"],
        "emotionalTone": "mysterious",
        "interpretation": "You stand before a new chapter.",
        "message": "Open the door.",
        "recommendedMeditation": "sleep-sanctuary",
    }
)

LIFEPATH_REPLY = json.dumps(
    {
        "archetype": "King",
        "archetypeDescription": "You bring order and bless those around you.",
        "currentPhase": "Mastering",
        "lifeThemes": ["service", "structure", "legacy"],
        "strengths": ["vision", "patience", "fairness"],
        "growthAreas": ["rest", "delegation"],
        "potentialPaths": [{"name": "Mentor", "description": "Guide others", "alignment": 9}],
        "affirmation": "I lead with a generous heart.",
        "recommendedMeditation": "confidence-builder",
    }
)

SCENE_CODE = """```javascript
const scene = new THREE.Scene();
const camera = new THREE.PerspectiveCamera(75, window.innerWidth / window.innerHeight, 0.1, 1000);
const renderer = new THREE.WebGLRenderer({ antialias: true });
renderer.setSize(window.innerWidth, window.innerHeight);
document.body.appendChild(renderer.domElement);
const controls = new THREE.OrbitControls(camera, renderer.domElement);
function animate() {
  requestAnimationFrame(animate);
  controls.update();
  renderer.render(scene, camera);
}
animate();
```"""


def _sequential_ids():
    counter = itertools.count(1)
    return lambda: f"art{next(counter):07d}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def make_pipeline(clock, store):
    """Build a pipeline over in-memory fakes; replies default to a valid mind run."""

    def _make(analysis=(MIND_REPLY,), code=(SCENE_CODE,), repeat=True, limiter=None, preflight=None, object_store=None):
        return VisualizationPipeline(
            limiter=limiter or RateLimiter(store=MemoryWindowStore(), max_requests=5, window_seconds=3600, clock=clock),
            analysis_invoker=ScriptedInvoker(*analysis, repeat_last=repeat),
            code_invoker=ScriptedInvoker(*code, repeat_last=repeat),
            packager=ArtifactPackager(object_store or store, id_factory=_sequential_ids()),
            preflight=preflight,
        )

    return _make
