"""Multi-target orchestration over one shared browser.

Crawler launches a single Chromium process, then collects targets in
consecutive batches of `threads` concurrent collectors. Every target gets its
own browser context (cookies, headers, localStorage and instrumentation), so
targets never observe each other's state. Results are keyed by target and
recorded only after a batch completes.
"""

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from itertools import batched
from typing import Any

import psutil
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from getjs.auth import SessionCredentials
from getjs.collector import CollectionResult, SignalCollector, is_timeout_error
from getjs.config import GetJSConfig
from getjs.exceptions import GetJSError, NavigationError

logger = logging.getLogger(__name__)

MEMORY_WARNING_PERCENT = 80.0


@dataclass
class TargetResult:
    """Per-target outcome as recorded by the crawler.

    Failed targets carry an error message and no URLs.
    """

    target: str
    urls: list[str] = field(default_factory=list)
    sources: dict[str, str] = field(default_factory=dict)
    timed_out: bool = False
    error: str | None = None

    @classmethod
    def from_collection(cls, result: CollectionResult) -> "TargetResult":
        return cls(
            target=result.target,
            urls=list(result.urls),
            sources={url: str(tag) for url, tag in result.sources.items()},
            timed_out=result.timed_out,
        )

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class CrawlerStats:
    """Statistics collected during a crawl.

    Tracks targets collected, failures, timeouts and errors by type.
    """

    targets_collected: int = 0
    targets_failed: int = 0
    targets_timed_out: int = 0
    urls_discovered: int = 0
    batches: int = 0
    start_time: float = field(default_factory=time.time)
    error_counts: dict[str, int] = field(default_factory=dict)  # error_type -> count

    def record_error(self, exc: BaseException) -> None:
        error_type = type(exc).__name__
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1


def local_storage_script(entries: dict[str, str]) -> str:
    """Init script that seeds localStorage before page scripts run."""
    payload = json.dumps(entries)
    return (
        "(() => {\n"
        f"    const entries = {payload};\n"
        "    try {\n"
        "        for (const [key, value] of Object.entries(entries)) {\n"
        "            window.localStorage.setItem(key, value);\n"
        "        }\n"
        "    } catch (e) {}\n"
        "})();"
    )


class Crawler:
    """Collects many targets with bounded concurrency on one browser.

    Use as an async context manager; the browser is launched lazily and torn
    down exactly once on exit.

    Example:
        >>> async with Crawler(config, session) as crawler:
        ...     results = await crawler.crawl(["https://a.example/", "https://b.example/"])
    """

    def __init__(self, config: GetJSConfig, session: SessionCredentials | None = None) -> None:
        self.config = config
        self.session = session or SessionCredentials()
        self.stats = CrawlerStats()

        self.playwright: Any = None
        self.playwright_browser: Any = None
        self._browser_lock = asyncio.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    async def __aenter__(self) -> "Crawler":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self._close_browser()

    # ========== Browser lifecycle ==========

    async def _ensure_browser(self) -> None:
        """Launch the shared Chromium browser once."""
        async with self._browser_lock:
            if self.playwright_browser is not None:
                return

            browser_config = self.config.browser
            launch_options: dict[str, Any] = {"headless": browser_config.headless}
            if browser_config.proxy:
                launch_options["proxy"] = {"server": browser_config.proxy}

            logger.info("Launching Chromium...")
            self.playwright = await async_playwright().start()
            self.playwright_browser = await self.playwright.chromium.launch(**launch_options)
            logger.debug(f"Browser launched (headless={browser_config.headless})")

    async def _create_browser_context(self, target: str | None = None) -> Any:
        """Create an isolated browser context carrying the session material.

        Args:
            target: Target being collected, used to scope raw cookie strings

        Returns:
            Browser context object
        """
        await self._ensure_browser()
        assert self.playwright_browser is not None

        browser_config = self.config.browser
        context_options: dict[str, Any] = {
            "ignore_https_errors": browser_config.ignore_https_errors,
            "user_agent": browser_config.user_agent,
            "viewport": {
                "width": browser_config.viewport_width,
                "height": browser_config.viewport_height,
            },
        }
        if self.session.headers:
            context_options["extra_http_headers"] = self.session.headers

        context = await self.playwright_browser.new_context(**context_options)

        cookies = self.session.cookies_for(target) if target else list(self.session.cookies)
        if cookies:
            await context.add_cookies(cookies)
        if self.session.has_local_storage:
            await context.add_init_script(script=local_storage_script(self.session.local_storage))

        return context

    async def _close_browser(self) -> None:
        """Close browser and cleanup resources."""
        if self.playwright_browser is not None:
            logger.debug("Closing Chromium...")
            with contextlib.suppress(Exception):
                await self.playwright_browser.close()

        if self.playwright is not None:
            with contextlib.suppress(Exception):
                await self.playwright.stop()

        self.playwright_browser = None
        self.playwright = None

    @contextlib.asynccontextmanager
    async def request_context(self, target: str | None = None) -> AsyncIterator[Any]:
        """Authenticated browser context for fetching files with the session's cookies.

        Args:
            target: Target a raw cookie string is scoped to (single-target runs)
        """
        context = await self._create_browser_context(target)
        try:
            yield context
        finally:
            with contextlib.suppress(PlaywrightError):
                await context.close()

    # ========== Collection ==========

    async def collect_target(self, target: str) -> CollectionResult:
        """Collect one target in a fresh context, closing the context afterwards."""
        context = await self._create_browser_context(target)
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            collector = SignalCollector(context, self.config.collector)
            return await collector.collect(target)
        finally:
            self._in_flight -= 1
            with contextlib.suppress(PlaywrightError):
                await context.close()

    async def crawl(
        self,
        targets: list[str],
        on_result: Callable[[TargetResult], Awaitable[None] | None] | None = None,
        *,
        isolate_failures: bool | None = None,
    ) -> dict[str, TargetResult]:
        """Collect every target, `threads` at a time.

        Args:
            targets: Validated target URLs, processed in order
            on_result: Called once per target after its batch completes
            isolate_failures: Record failures as empty results instead of
                raising. Defaults to True when there is more than one target.

        Returns:
            Target -> TargetResult, in submission order

        Raises:
            NavigationError: For a non-timeout failure when failures are not isolated
        """
        if isolate_failures is None:
            isolate_failures = len(targets) > 1

        results: dict[str, TargetResult] = {}
        await self._ensure_browser()

        for batch in batched(targets, self.config.threads):
            self.stats.batches += 1
            logger.debug(f"Batch {self.stats.batches}: {len(batch)} targets")

            outcomes = await asyncio.gather(
                *(self.collect_target(target) for target in batch),
                return_exceptions=True,
            )

            for target, outcome in zip(batch, outcomes, strict=True):
                result = self._record(target, outcome, isolate_failures)
                results[target] = result
                if on_result is not None:
                    maybe_awaitable = on_result(result)
                    if maybe_awaitable is not None:
                        await maybe_awaitable

            self._check_memory()

        return results

    def _record(
        self, target: str, outcome: CollectionResult | BaseException, isolate_failures: bool
    ) -> TargetResult:
        if isinstance(outcome, CollectionResult):
            self.stats.targets_collected += 1
            self.stats.urls_discovered += len(outcome.urls)
            if outcome.timed_out:
                self.stats.targets_timed_out += 1
            return TargetResult.from_collection(outcome)

        if not isinstance(outcome, Exception):
            raise outcome

        self.stats.targets_failed += 1
        self.stats.record_error(outcome)

        if not isolate_failures:
            if isinstance(outcome, GetJSError):
                raise outcome
            raise NavigationError(target, str(outcome)) from outcome

        reason = "timeout" if is_timeout_error(outcome) else str(outcome).splitlines()[0]
        logger.warning(f"Failed to collect {target}: {reason}")
        return TargetResult(target=target, error=reason or type(outcome).__name__)

    def _check_memory(self) -> None:
        """Log process memory and warn when system memory is nearly exhausted."""
        try:
            process = psutil.Process()
            rss_mb = process.memory_info().rss / (1024 * 1024)
            system_percent = psutil.virtual_memory().percent
        except psutil.Error:
            return

        logger.debug(f"Memory: {rss_mb:.0f} MB RSS, system {system_percent:.0f}% used")
        if system_percent > MEMORY_WARNING_PERCENT:
            logger.warning(
                f"System memory usage at {system_percent:.0f}%, consider lowering --threads"
            )
