"""
Evidence upload for score submissions and resolutions.

All-or-nothing: either every file is stored and the URLs are returned, or any
file already stored is discarded again and the whole operation fails with
UploadError / UploadTimeout. The timeout bounds the batch as a whole, not each
file.
"""

from __future__ import annotations

import logging
import time

from flask import current_app

from kpi_review.core.exceptions import UploadError, UploadTimeout
from kpi_review.integrations.evidence_store import StoreError, StoreTimeout, get_evidence_store

logger = logging.getLogger(__name__)


def _is_file(candidate) -> bool:
    if candidate is None:
        return False
    return bool(getattr(candidate, "filename", None))


def discard_evidence(urls) -> None:
    """Best-effort removal of stored files that will not be referenced."""
    if not urls:
        return
    store = get_evidence_store()
    for url in urls:
        store.discard(url)
    logger.info("Discarded %d orphaned evidence file(s)", len(urls))


def upload_evidence(files, timeout: float | None = None) -> list[str]:
    """Store ``files`` and return their URLs in input order.

    Args:
        files:   Iterable of file-like objects with ``filename`` (werkzeug
                 FileStorage in HTTP requests). Entries without a filename are
                 ignored (empty multipart fields).
        timeout: Seconds for the whole batch; defaults to
                 ``EVIDENCE_UPLOAD_TIMEOUT``.

    Raises:
        UploadTimeout: the batch did not finish in time.
        UploadError:   the store rejected a file.
    """
    files = [f for f in files or [] if _is_file(f)]
    if not files:
        return []

    store = get_evidence_store()
    limit = timeout if timeout is not None else current_app.config.get("EVIDENCE_UPLOAD_TIMEOUT", 30)
    deadline = time.monotonic() + limit
    urls: list[str] = []
    try:
        for f in files:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StoreTimeout(f"Evidence upload exceeded {limit}s")
            urls.append(store.store(f, timeout=remaining))
        if time.monotonic() > deadline:
            raise StoreTimeout(f"Evidence upload exceeded {limit}s")
    except StoreTimeout as exc:
        discard_evidence(urls)
        logger.warning("Evidence upload timed out after %d of %d file(s)", len(urls), len(files))
        raise UploadTimeout(str(exc)) from exc
    except StoreError as exc:
        discard_evidence(urls)
        logger.warning("Evidence upload failed after %d of %d file(s): %s", len(urls), len(files), exc)
        raise UploadError(str(exc)) from exc

    return urls
