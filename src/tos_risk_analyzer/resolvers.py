"""Fetchers for the pages behind same-origin legal links.

The detector only ever asks for HTML by absolute URL; these resolvers decide
where that HTML comes from. ``HttpLinkResolver`` retries transient transport
errors with exponential backoff, ``FileLinkResolver`` serves pages saved to
disk.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import unquote, urlparse

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0
MAX_PAGE_BYTES = 5_000_000


@runtime_checkable
class LinkResolver(Protocol):
    """Returns the HTML at ``url``, or ``None`` when it cannot be fetched."""

    def fetch(self, url: str) -> str | None: ...


class HttpLinkResolver:
    """Fetch linked pages over HTTP(S) with ``httpx``.

    Args:
        timeout: Per-request timeout in seconds.
        client: Optional pre-configured ``httpx.Client`` (useful for tests
            with ``httpx.MockTransport``).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FETCH_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def fetch(self, url: str) -> str | None:
        if urlparse(url).scheme not in ("http", "https"):
            return None
        try:
            response = self._get(url)
        except httpx.HTTPError as exc:
            logger.warning("Failed to fetch linked page %s: %s", url, exc)
            return None

        if response.status_code >= 400:
            logger.warning("Linked page %s returned HTTP %d", url, response.status_code)
            return None
        if len(response.content) > MAX_PAGE_BYTES:
            logger.warning("Linked page %s exceeds %d bytes; skipped", url, MAX_PAGE_BYTES)
            return None
        return response.text

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    def _get(self, url: str) -> httpx.Response:
        return self._client.get(url)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpLinkResolver:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FileLinkResolver:
    """Serve linked pages from a directory of saved HTML files.

    The path component of a URL is mapped onto ``root`` (``/terms`` is
    looked up as ``root/terms``, ``root/terms.html`` and
    ``root/terms/index.html``). A ``file://`` URL is first tried as the
    absolute path it names, then mapped the same way, so both
    ``file:///abs/root/terms.html`` and root-relative ``file:///terms``
    resolve. Nothing outside ``root`` is ever read.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def fetch(self, url: str) -> str | None:
        path = self._locate(url)
        if path is None:
            logger.debug("No saved page for %s under %s", url, self._root)
            return None
        return path.read_text(encoding="utf-8", errors="replace")

    def _locate(self, url: str) -> Path | None:
        parsed = urlparse(url)
        path = unquote(parsed.path)
        base = self._root / path.lstrip("/")
        candidates = [base, base.with_suffix(".html"), base / "index.html"]
        if parsed.scheme == "file":
            candidates.insert(0, Path(path))

        for candidate in candidates:
            resolved = candidate.resolve()
            if not resolved.is_relative_to(self._root):
                continue
            if resolved.is_file():
                return resolved
        return None
