from __future__ import annotations

import logging
import os
import re
import secrets
import string
from pathlib import Path
from typing import Optional

import requests

from mindscape.errors import StorageError

log = logging.getLogger(__name__)

ARTIFACT_BACKEND = os.getenv("ARTIFACT_BACKEND", "local").strip().lower() or "local"
ARTIFACT_DIR = Path(os.getenv("ARTIFACT_DIR", "cache/artifacts"))
ARTIFACT_PUBLIC_BASE_URL = os.getenv("ARTIFACT_PUBLIC_BASE_URL", "/artifacts").rstrip("/")
ARTIFACT_HTTP_ENDPOINT = os.getenv("ARTIFACT_HTTP_ENDPOINT", "").rstrip("/")
ARTIFACT_HTTP_TOKEN = os.getenv("ARTIFACT_HTTP_TOKEN", "").strip()
try:
    ARTIFACT_HTTP_TIMEOUT = float(os.getenv("ARTIFACT_HTTP_TIMEOUT_SECS", "15") or 15)
except ValueError:
    ARTIFACT_HTTP_TIMEOUT = 15.0

# URL-safe alphabet, 10 characters per id
ID_ALPHABET = string.ascii_letters + string.digits + "_-"
ID_LENGTH = 10

KEY_RE = re.compile(r"^[a-z][a-z0-9-]*/[A-Za-z0-9_-]{1,64}\.html$")


def new_artifact_id(length: int = ID_LENGTH) -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def check_key(key: str) -> str:
    if not isinstance(key, str) or not KEY_RE.match(key):
        raise StorageError(f"Refusing to store artifact under invalid key {key!r}")
    return key


class LocalObjectStore:
    """Write-once artifact store on the local filesystem, served back by the API under /artifacts."""

    name = "local"

    def __init__(self, root: Optional[Path] = None, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root) if root is not None else ARTIFACT_DIR
        base = public_base_url if public_base_url is not None else ARTIFACT_PUBLIC_BASE_URL
        self.public_base_url = base.rstrip("/")

    def path_for(self, key: str) -> Path:
        return self.root / check_key(key)

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    def put(self, key: str, content: str, content_type: str = "text/html") -> str:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{secrets.token_hex(4)}.tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                f.write(content)
            # link() refuses an existing target, so a key is never overwritten
            os.link(tmp, path)
        except FileExistsError as exc:
            raise StorageError(f"Artifact {key} already exists") from exc
        except OSError as exc:
            raise StorageError(f"Could not write artifact {key}: {exc}") from exc
        finally:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
        return self.url_for(key)

    def get(self, key: str) -> Optional[str]:
        try:
            path = self.path_for(key)
        except StorageError:
            return None
        if not path.is_file():
            return None
        with path.open("r", encoding="utf-8") as f:
            return f.read()


class HttpObjectStore:
    """Blob store reached over HTTP: ``PUT {endpoint}/{key}`` with a bearer token.

    The request carries ``If-None-Match: *`` so the remote side refuses to
    replace an existing blob. A JSON reply with a ``url`` field wins over the
    configured public base URL.
    """

    name = "http"

    def __init__(
        self,
        endpoint: Optional[str] = None,
        token: Optional[str] = None,
        public_base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self.endpoint = (endpoint if endpoint is not None else ARTIFACT_HTTP_ENDPOINT).rstrip("/")
        if not self.endpoint:
            raise ValueError("ARTIFACT_HTTP_ENDPOINT is required for the http artifact backend")
        self.token = token if token is not None else ARTIFACT_HTTP_TOKEN
        self.public_base_url = (public_base_url or self.endpoint).rstrip("/")
        self.timeout_s = float(timeout_s if timeout_s is not None else ARTIFACT_HTTP_TIMEOUT)

    def put(self, key: str, content: str, content_type: str = "text/html") -> str:
        check_key(key)
        headers = {
            "Content-Type": f"{content_type}; charset=utf-8",
            "Cache-Control": "public, max-age=31536000, immutable",
            "If-None-Match": "*",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            resp = requests.put(
                f"{self.endpoint}/{key}",
                data=content.encode("utf-8"),
                headers=headers,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise StorageError(f"Artifact upload failed: {exc!r}") from exc
        if resp.status_code == 412:
            raise StorageError(f"Artifact {key} already exists")
        if resp.status_code not in (200, 201, 204):
            raise StorageError(f"Artifact upload failed: HTTP {resp.status_code}")
        url = None
        try:
            body = resp.json()
            if isinstance(body, dict):
                url = body.get("url")
        except ValueError:
            pass
        return url if isinstance(url, str) and url else f"{self.public_base_url}/{key}"


def build_object_store():
    if ARTIFACT_BACKEND == "http":
        return HttpObjectStore()
    if ARTIFACT_BACKEND != "local":
        log.warning("storage: unknown ARTIFACT_BACKEND=%s; using local store", ARTIFACT_BACKEND)
    return LocalObjectStore()
