"""Evidence store adapters.

Score submissions and resolutions may attach supporting documents. The files
themselves live in an external object store; the review engine only keeps the
URLs it gets back.

Adapters (Strategy pattern, chosen by ``EVIDENCE_STORE`` config):
    - LocalEvidenceStore - writes under EVIDENCE_UPLOAD_DIR, serves from EVIDENCE_BASE_URL
    - HttpEvidenceStore  - multipart POST to EVIDENCE_STORE_URL, expects {"url": ...}

Contract:
    store(file, timeout=...) -> url      raises StoreError / StoreTimeout
    discard(url)                         best-effort removal, never raises

Tests replace the adapter by assigning ``app.extensions["evidence_store"]``.
"""

from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod

import requests
from flask import current_app
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30  # seconds


class StoreError(Exception):
    """Raised when the store cannot persist a file."""


class StoreTimeout(StoreError):
    """Raised when the store did not answer within the timeout."""


def _filename_of(file) -> str:
    name = secure_filename(getattr(file, "filename", "") or "")
    return name or "evidence.bin"


def _read_bytes(file) -> bytes:
    stream = getattr(file, "stream", None) or file
    if hasattr(stream, "seek"):
        stream.seek(0)
    return stream.read()


class BaseEvidenceStore(ABC):
    """Abstract adapter - every evidence store implements this interface."""

    @abstractmethod
    def store(self, file, *, timeout: float | None = None) -> str:
        """Persist ``file`` and return its public URL."""

    def discard(self, url: str) -> None:
        """Remove a previously stored file. Default: keep it."""


class LocalEvidenceStore(BaseEvidenceStore):
    """Filesystem-backed store for development and single-node deployments."""

    def __init__(self, root: str, base_url: str) -> None:
        self.root = root
        self.base_url = base_url.rstrip("/")

    def store(self, file, *, timeout: float | None = None) -> str:
        name = f"{uuid.uuid4().hex[:12]}-{_filename_of(file)}"
        try:
            os.makedirs(self.root, exist_ok=True)
            with open(os.path.join(self.root, name), "wb") as fh:
                fh.write(_read_bytes(file))
        except OSError as exc:
            raise StoreError(f"Could not write evidence file: {exc}") from exc
        return f"{self.base_url}/{name}"

    def discard(self, url: str) -> None:
        if not url.startswith(self.base_url + "/"):
            return
        path = os.path.join(self.root, url[len(self.base_url) + 1:])
        try:
            os.remove(path)
        except OSError as exc:
            logger.warning("Could not discard evidence file %s: %s", path, exc)


class HttpEvidenceStore(BaseEvidenceStore):
    """Remote object store reached over HTTP."""

    def __init__(self, endpoint: str, session: requests.Session | None = None) -> None:
        if not endpoint:
            raise StoreError("EVIDENCE_STORE_URL is not configured.")
        self.endpoint = endpoint
        self._session = session or requests.Session()

    def store(self, file, *, timeout: float | None = None) -> str:
        filename = _filename_of(file)
        mimetype = getattr(file, "mimetype", None) or "application/octet-stream"
        try:
            resp = self._session.post(
                self.endpoint,
                files={"file": (filename, _read_bytes(file), mimetype)},
                timeout=timeout or _DEFAULT_TIMEOUT,
            )
        except requests.Timeout as exc:
            raise StoreTimeout(f"Evidence upload timed out after {timeout or _DEFAULT_TIMEOUT}s") from exc
        except requests.RequestException as exc:
            raise StoreError(f"Evidence upload failed: {exc}") from exc

        if resp.status_code >= 300:
            raise StoreError(f"Evidence store returned HTTP {resp.status_code}")
        try:
            url = (resp.json() or {}).get("url")
        except ValueError as exc:
            raise StoreError("Evidence store returned a non-JSON body") from exc
        if not url:
            raise StoreError("Evidence store response has no 'url'")
        return url

    def discard(self, url: str) -> None:
        try:
            self._session.delete(url, timeout=_DEFAULT_TIMEOUT)
        except requests.RequestException as exc:
            logger.warning("Could not discard evidence %s: %s", url, exc)


def build_evidence_store(config) -> BaseEvidenceStore:
    """Instantiate the adapter named by ``config["EVIDENCE_STORE"]``."""
    kind = (config.get("EVIDENCE_STORE") or "local").lower()
    if kind == "http":
        return HttpEvidenceStore(config.get("EVIDENCE_STORE_URL", ""))
    if kind == "local":
        return LocalEvidenceStore(
            config.get("EVIDENCE_UPLOAD_DIR", "instance/evidence"),
            config.get("EVIDENCE_BASE_URL", "/evidence"),
        )
    raise StoreError(f"Unknown EVIDENCE_STORE '{kind}'")


def get_evidence_store() -> BaseEvidenceStore:
    """Return the app's evidence store, building it on first use."""
    store = current_app.extensions.get("evidence_store")
    if store is None:
        store = build_evidence_store(current_app.config)
        current_app.extensions["evidence_store"] = store
    return store
