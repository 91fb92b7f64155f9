"""Downloading of discovered JavaScript files.

JSDownloader fetches scripts concurrently, through the authenticated browser
request context when one is available and a plain httpx client otherwise.
Bodies are then processed in input order: each is hashed with SHA-256 and,
with dedupe enabled, byte-identical content already saved in this run is
skipped instead of written again.
"""

import asyncio
import base64
import contextlib
import hashlib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urljoin, urlparse

import aiofiles
import httpx
from playwright.async_api import Error as PlaywrightError

from getjs.config import DownloadConfig
from getjs.exceptions import DownloadError
from getjs.http_client import create_http_client

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


def compute_content_hash(content: bytes) -> str:
    """SHA-256 hex digest of downloaded bytes."""
    return hashlib.sha256(content).hexdigest()


def sanitize_filename(url: str) -> str:
    """Derive a safe local filename from a script URL.

    The result is "<host with dots as underscores>_<basename>", with every
    character outside [A-Za-z0-9._-] replaced by "_". URLs without a
    basename get "script_<url-safe base64 of the URL, 16 chars>.js".

    Examples:
        >>> sanitize_filename("https://cdn.example.com/js/app.min.js?v=2")
        'cdn_example_com_app.min.js'
        >>> sanitize_filename("https://example.com/")
        'example_com_script_aHR0cHM6Ly9leGFt.js'
    """
    encoded = base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii")[:16]
    fallback = f"script_{encoded}.js"

    try:
        parsed = urlparse(url)
        host = parsed.hostname or ""
    except ValueError:
        return _UNSAFE_FILENAME_CHARS.sub("_", fallback)

    basename = parsed.path.rsplit("/", 1)[-1] or fallback
    name = f"{host.replace('.', '_')}_{basename}" if host else basename
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


@dataclass
class DownloadedAsset:
    """A script saved to disk."""

    url: str
    path: Path
    size: int
    content_hash: str


@dataclass
class DownloadReport:
    """Outcome of a batch download.

    Attributes:
        downloaded: Files written, in input order
        skipped: URLs whose content duplicated an earlier download
        errors: One {"url", "error", "type"} entry per failed URL
    """

    downloaded: list[DownloadedAsset] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[dict[str, str]] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(asset.size for asset in self.downloaded)


class JSDownloader:
    """Fetches script URLs and stores them under the download directory.

    Features:
    - Concurrent fetches bounded by a semaphore
    - Browser request context (session cookies, TLS errors ignored) or an
      httpx fallback with manually bounded redirects
    - Optional SHA-256 content deduplication across the whole run
    - Per-URL error collection; one failure never aborts the batch
    """

    def __init__(
        self,
        config: DownloadConfig,
        *,
        request_context: Any = None,
        client: httpx.AsyncClient | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize downloader.

        Args:
            config: Download settings
            request_context: Playwright browser context whose `.request` is used
            client: Optional HTTP client (for testing with mocks)
            headers: Extra headers for the httpx fallback
        """
        self.config = config
        self.request_context = request_context
        self.client = client
        self._owns_client = False
        self.headers = headers or {}
        self.directory = Path(config.directory)

        self.seen_hashes: dict[str, str] = {}  # content hash -> first URL
        self._written_paths: set[Path] = set()
        self.semaphore = asyncio.Semaphore(config.max_concurrent_downloads)

    @property
    def uses_browser_context(self) -> bool:
        return self.request_context is not None and self.config.use_browser_context

    async def _ensure_client(self) -> None:
        """Ensure HTTP client is initialized."""
        if self.client is None:
            self.client = create_http_client(self.config, self.headers)
            self._owns_client = True

    async def aclose(self) -> None:
        """Close the HTTP client if this downloader created it."""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None
            self._owns_client = False

    # ========== Fetching ==========

    async def fetch(self, url: str) -> bytes:
        """Fetch one URL's body.

        Raises:
            DownloadError: On network failure, non-2xx status or too many redirects
        """
        if self.uses_browser_context:
            return await self._fetch_with_context(url)
        return await self._fetch_with_client(url, self.config.max_redirects)

    async def _fetch_with_context(self, url: str) -> bytes:
        try:
            response = await self.request_context.request.get(
                url,
                timeout=self.config.timeout_ms,
                ignore_https_errors=True,
                max_redirects=self.config.max_redirects,
            )
        except PlaywrightError as e:
            raise DownloadError(url, str(e).splitlines()[0]) from e

        try:
            if not response.ok:
                raise DownloadError(url, f"HTTP {response.status}")
            return await response.body()
        finally:
            with contextlib.suppress(PlaywrightError):
                await response.dispose()

    async def _fetch_with_client(self, url: str, redirects_left: int) -> bytes:
        await self._ensure_client()
        assert self.client is not None

        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise DownloadError(url, f"{type(e).__name__}: {e}") from e

        if response.status_code in REDIRECT_STATUSES:
            location = response.headers.get("location")
            if not location:
                raise DownloadError(url, f"HTTP {response.status_code} without Location header")
            if redirects_left <= 0:
                raise DownloadError(url, f"Exceeded {self.config.max_redirects} redirects")
            next_url = urljoin(str(response.url), location)
            logger.debug(f"Redirect {url} -> {next_url}")
            return await self._fetch_with_client(next_url, redirects_left - 1)

        if not response.is_success:
            raise DownloadError(url, f"HTTP {response.status_code}")
        return response.content

    # ========== Storing ==========

    def _target_path(self, url: str, content_hash: str) -> Path:
        path = self.directory / sanitize_filename(url)
        if path in self._written_paths:
            # Distinct URLs mapping to one name in the same run keep both files
            path = path.with_name(f"{path.stem}_{content_hash[:8]}{path.suffix}")
        return path

    async def _write(self, url: str, content: bytes, path: Path | None = None) -> DownloadedAsset:
        content_hash = compute_content_hash(content)
        file_path = path or self._target_path(url, content_hash)

        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(content)

        self._written_paths.add(file_path)
        self.seen_hashes.setdefault(content_hash, url)
        logger.debug(f"Saved {url} -> {file_path} ({len(content)} bytes)")
        return DownloadedAsset(
            url=url, path=file_path, size=len(content), content_hash=content_hash
        )

    async def download_one(self, url: str, output_path: Path | None = None) -> DownloadedAsset:
        """Download a single URL to output_path (or the download directory).

        Raises:
            DownloadError: If the fetch fails
        """
        try:
            content = await self.fetch(url)
            return await self._write(url, content, output_path)
        finally:
            await self.aclose()

    async def download_all(self, urls: list[str], dedupe: bool | None = None) -> DownloadReport:
        """Download every URL, collecting failures instead of raising.

        Fetches run concurrently. Results are consumed in input order as they
        complete, so which duplicate is kept is deterministic and each body is
        released once written; only bodies that finish ahead of an earlier,
        slower URL wait in memory.

        Args:
            urls: Script URLs to fetch (repeats are ignored)
            dedupe: Skip content already saved in this run (defaults to config)

        Returns:
            DownloadReport with saved files, duplicates and errors
        """
        if dedupe is None:
            dedupe = self.config.dedupe

        unique_urls = list(dict.fromkeys(urls))
        report = DownloadReport()
        if not unique_urls:
            return report

        async def fetch_guarded(url: str) -> bytes:
            async with self.semaphore:
                return await self.fetch(url)

        tasks = [asyncio.create_task(fetch_guarded(url)) for url in unique_urls]
        try:
            for url, task in zip(unique_urls, tasks, strict=True):
                try:
                    content = await task
                except Exception as e:
                    report.errors.append(self._error_entry(url, e))
                    continue

                content_hash = compute_content_hash(content)
                if dedupe and content_hash in self.seen_hashes:
                    original = self.seen_hashes[content_hash]
                    logger.debug(f"Skipping {url}: same content as {original}")
                    report.skipped.append(url)
                    continue

                try:
                    report.downloaded.append(await self._write(url, content))
                except OSError as e:
                    report.errors.append(self._error_entry(url, e))
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.aclose()

        logger.info(
            f"Downloaded {len(report.downloaded)} files "
            f"({len(report.skipped)} duplicates, {len(report.errors)} failed)"
        )
        return report

    @staticmethod
    def _error_entry(url: str, exc: Exception) -> dict[str, str]:
        cause = exc.__cause__ if isinstance(exc, DownloadError) and exc.__cause__ else exc
        reason = exc.reason if isinstance(exc, DownloadError) else str(exc)
        logger.debug(f"Download failed for {url}: {reason}")
        return {"url": url, "error": reason, "type": type(cause).__name__}
