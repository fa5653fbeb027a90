from __future__ import annotations

import logging
import time
from typing import Callable

import requests

from mindscape.code_sanitizer import SanitizedCode
from mindscape.errors import StorageError
from mindscape.models import Artifact
from mindscape.render import PageMeta, render_artifact_html
from mindscape.storage import new_artifact_id

log = logging.getLogger(__name__)


class ArtifactPackager:
    """Render verified code into the HTML shell and store it as a new, immutable blob."""

    content_type = "text/html"

    def __init__(
        self,
        store,
        id_factory: Callable[[], str] = new_artifact_id,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self._id_factory = id_factory
        self._clock = clock

    def package(self, safe: SanitizedCode, page: PageMeta, prefix: str) -> Artifact:
        if not isinstance(safe, SanitizedCode):
            raise TypeError("package() only accepts code that passed the sanitizer gate")
        html = render_artifact_html(safe.code, page)
        artifact_id = self._id_factory()
        key = f"{prefix.strip('/')}/{artifact_id}.html"
        t0 = time.monotonic()
        try:
            url = self.store.put(key, html, self.content_type)
        except StorageError:
            log.error("packager.put: key=%s failed", key)
            raise
        except (requests.RequestException, OSError) as exc:
            log.error("packager.put: key=%s failed err=%r", key, exc)
            raise StorageError(f"Artifact upload failed: {exc}") from exc
        log.info(
            "packager.put: key=%s bytes=%d backend=%s elapsed_ms=%d",
            key, len(html), getattr(self.store, "name", "?"), int((time.monotonic() - t0) * 1000),
        )
        return Artifact(id=artifact_id, url=url, key=key, stored_at=self._clock(), content_type=self.content_type)
