"""Per-target JavaScript signal collection.

A SignalCollector drives one browser page through a fixed sequence of phases
and gathers script URLs from independent sources:

- network responses (URL and content type, plus service worker bodies)
- DOM mutations adding <script src> nodes
- dynamic script creation, reported before the node is attached
- static <script src> and preload links after load
- import specifiers in inline ES modules
- URLs in WebSocket frames (Chromium DevTools Protocol)
- service worker registrations and running worker versions

Every source funnels into one AssetSink, which normalizes, classifies and
deduplicates by canonical URL. The in-page instrumentation is installed per
browser context, so concurrent collectors never share state.
"""

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from getjs.config import CollectorConfig
from getjs.exceptions import CollectorStateError
from getjs.interactions import scroll_page, trigger_hovers
from getjs.rules import (
    URLNormalizer,
    classify,
    extract_js_urls,
    extract_module_specifiers,
    extract_service_worker_registrations,
)

logger = logging.getLogger(__name__)

REPORT_BINDING = "__getjs_report"

# Installed with add_init_script so it runs before any page script.
INSTRUMENTATION_JS = """(() => {
    if (window.__getjsInstrumented) return;
    window.__getjsInstrumented = true;

    const report = (src, kind) => {
        try {
            if (src && typeof window.__getjs_report === 'function') {
                window.__getjs_report(String(src), kind, document.baseURI);
            }
        } catch (e) {}
    };

    const observer = new MutationObserver((mutations) => {
        for (const mutation of mutations) {
            for (const node of mutation.addedNodes) {
                if (node.nodeName === 'SCRIPT' && node.src) report(node.src, 'mutation');
            }
        }
    });
    observer.observe(document, { childList: true, subtree: true });

    const srcDescriptor = Object.getOwnPropertyDescriptor(HTMLScriptElement.prototype, 'src');
    const originalCreateElement = Document.prototype.createElement;
    Document.prototype.createElement = function (tagName, options) {
        const element = originalCreateElement.call(this, tagName, options);
        if (String(tagName).toLowerCase() !== 'script') return element;

        const originalSetAttribute = element.setAttribute;
        element.setAttribute = function (name, value) {
            if (String(name).toLowerCase() === 'src') report(value, 'creation');
            return originalSetAttribute.call(this, name, value);
        };

        if (srcDescriptor && srcDescriptor.set) {
            Object.defineProperty(element, 'src', {
                configurable: true,
                enumerable: true,
                get() { return srcDescriptor.get.call(this); },
                set(value) {
                    report(value, 'creation');
                    srcDescriptor.set.call(this, value);
                },
            });
        }
        return element;
    };
})();"""

STATIC_SCRIPTS_JS = """() => {
    const urls = [];
    document.querySelectorAll('script[src]').forEach((s) => urls.push(s.src));
    document
        .querySelectorAll('link[rel="preload"][as="script"], link[rel="modulepreload"]')
        .forEach((l) => urls.push(l.href));
    return urls;
}"""

INLINE_MODULE_TEXT_JS = """() => Array.from(document.querySelectorAll('script[type="module"]'))
    .filter((s) => !s.src)
    .map((s) => s.textContent || '')"""

SCRIPT_TEXT_JS = """() => Array.from(document.querySelectorAll('script'))
    .map((s) => s.textContent || '')
    .filter((text) => text.length > 0)"""

SERVICE_WORKER_URL_HINTS = ("service-worker", "sw.js")
SERVICE_WORKER_BODY_MARKERS = ("self.addEventListener", "ServiceWorkerGlobalScope")


class CollectorState(StrEnum):
    """Phases of a collection run, in order."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    INTERCEPTING = "intercepting"
    NAVIGATING = "navigating"
    EXTRACTING = "extracting"
    INTERACTING = "interacting"
    FINALIZING = "finalizing"
    DONE = "done"


_NEXT_STATE = {
    CollectorState.IDLE: CollectorState.INITIALIZING,
    CollectorState.INITIALIZING: CollectorState.INTERCEPTING,
    CollectorState.INTERCEPTING: CollectorState.NAVIGATING,
    CollectorState.NAVIGATING: CollectorState.EXTRACTING,
    CollectorState.EXTRACTING: CollectorState.INTERACTING,
    CollectorState.INTERACTING: CollectorState.FINALIZING,
    CollectorState.FINALIZING: CollectorState.DONE,
}


def can_transition(current: CollectorState, target: CollectorState) -> bool:
    """Forward by one phase, or from any running phase straight to finalizing."""
    if _NEXT_STATE.get(current) is target:
        return True
    return target is CollectorState.FINALIZING and current not in (
        CollectorState.FINALIZING,
        CollectorState.DONE,
    )


class SourceTag(StrEnum):
    """Which discovery source first produced a URL."""

    NETWORK_RESPONSE = "network-response"
    DOM_MUTATION = "dom-mutation"
    DYNAMIC_CREATION = "dynamic-creation"
    STATIC_DOM = "static-dom"
    INLINE_MODULE_IMPORT = "inline-module-import"
    WEBSOCKET_FRAME = "websocket-frame"
    SERVICE_WORKER = "service-worker"


_REPORT_KINDS = {
    "mutation": SourceTag.DOM_MUTATION,
    "creation": SourceTag.DYNAMIC_CREATION,
}


@dataclass(frozen=True)
class DiscoveredAsset:
    """A canonical script URL and the source that found it first."""

    url: str
    source: SourceTag


@dataclass
class CollectionResult:
    """Outcome of collecting one target.

    Attributes:
        target: The page that was analyzed
        urls: Sorted, deduplicated canonical URLs
        sources: Canonical URL -> first source that reported it
        timed_out: Navigation or a phase hit the timeout; urls are partial
        state: Final collector state (always DONE once collect() returns)
    """

    target: str
    urls: list[str]
    sources: dict[str, SourceTag] = field(default_factory=dict)
    timed_out: bool = False
    state: CollectorState = CollectorState.DONE

    @property
    def assets(self) -> list[DiscoveredAsset]:
        return [DiscoveredAsset(url, self.sources[url]) for url in self.urls]


class AssetSink:
    """Single reducer for every discovery source.

    Deduplicates by canonical URL; the first source to offer a URL keeps it.
    """

    def __init__(self) -> None:
        self._sources: dict[str, SourceTag] = {}

    def offer(
        self,
        raw_url: str,
        source: SourceTag,
        base_url: str | None,
        *,
        content_type: str | None = None,
        classify_as_js: bool = True,
    ) -> str | None:
        """Normalize, optionally classify, and record a URL.

        Returns:
            The canonical URL if it was newly recorded, otherwise None
        """
        canonical = URLNormalizer.normalize(raw_url, base_url)
        if canonical is None:
            return None
        if classify_as_js and not classify(canonical, content_type):
            return None
        if canonical in self._sources:
            return None

        self._sources[canonical] = source
        logger.debug(f"[{source}] {canonical}")
        return canonical

    def urls(self) -> list[str]:
        return sorted(self._sources)

    def sources(self) -> dict[str, SourceTag]:
        return dict(self._sources)

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, url: object) -> bool:
        return url in self._sources


def is_timeout_error(exc: BaseException) -> bool:
    """True for Playwright/asyncio timeouts and errors whose message says timeout."""
    if isinstance(exc, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return True
    return "timeout" in str(exc).lower()


class SignalCollector:
    """Collects script URLs for one target in one browser context.

    A collector is single-use: it owns the page it opens and the in-page
    instrumentation registered on its context.

    Example:
        >>> collector = SignalCollector(context, CollectorConfig())
        >>> result = await collector.collect("https://example.com/")
        >>> result.urls
        ['https://example.com/app.js', ...]
    """

    def __init__(
        self,
        context: Any,
        config: CollectorConfig | None = None,
        *,
        drain_timeout: float = 5.0,
    ) -> None:
        self.context = context
        self.config = config or CollectorConfig()
        self.state = CollectorState.IDLE
        self.sink = AssetSink()
        self.target: str | None = None
        self.timed_out = False

        self._base_url: str | None = None
        self._cdp: Any = None
        self._pending: set[asyncio.Task[None]] = set()
        self._drain_timeout = drain_timeout

    def get_results(self) -> list[str]:
        """Sorted canonical URLs found so far (safe to call mid-run)."""
        return self.sink.urls()

    def _transition(self, target: CollectorState) -> None:
        if not can_transition(self.state, target):
            raise CollectorStateError(
                f"Illegal collector transition {self.state.value} -> {target.value}"
            )
        logger.debug(f"Collector {self.target}: {self.state.value} -> {target.value}")
        self.state = target

    async def collect(self, target: str) -> CollectionResult:
        """Run every phase against the target and return what was found.

        A timeout at any point ends the run early with partial results.
        Any other failure propagates after the page has been cleaned up.

        Raises:
            CollectorStateError: If this collector has already been used
        """
        if self.state is not CollectorState.IDLE:
            raise CollectorStateError("A SignalCollector can only collect once")

        self.target = target
        self._base_url = target
        timeout_ms = self.config.timeout_ms
        page: Any = None

        try:
            self._transition(CollectorState.INITIALIZING)
            await self.context.expose_function(REPORT_BINDING, self._on_script_report)
            await self.context.add_init_script(script=INSTRUMENTATION_JS)
            page = await self.context.new_page()
            page.set_default_timeout(timeout_ms)

            self._transition(CollectorState.INTERCEPTING)
            page.on("response", self._on_response)
            self._cdp = await self._attach_cdp(page)

            self._transition(CollectorState.NAVIGATING)
            logger.debug(f"Navigating to {target}")
            await page.goto(target, wait_until="networkidle", timeout=timeout_ms)
            self._base_url = page.url or target
            await page.wait_for_timeout(self.config.initial_settle_ms)

            self._transition(CollectorState.EXTRACTING)
            await self._extract_static_scripts(page)

            self._transition(CollectorState.INTERACTING)
            await self._interact(page)
            await self._scan_inline_modules(page)
            await self._discover_service_workers(page)

            self._transition(CollectorState.FINALIZING)
            await page.wait_for_timeout(self.config.wait_ms)

        except Exception as e:
            if not is_timeout_error(e):
                raise
            self.timed_out = True
            logger.warning(
                f"Timeout while collecting {target} ({self.state.value}), "
                f"keeping {len(self.sink)} partial results"
            )

        finally:
            if self.state is not CollectorState.FINALIZING:
                self._transition(CollectorState.FINALIZING)
            await self._drain_pending()
            if page is not None:
                with contextlib.suppress(PlaywrightError):
                    await page.close()
            self._transition(CollectorState.DONE)

        logger.debug(f"Collected {len(self.sink)} scripts from {target}")
        return CollectionResult(
            target=target,
            urls=self.sink.urls(),
            sources=self.sink.sources(),
            timed_out=self.timed_out,
            state=self.state,
        )

    # ========== Phases ==========

    async def _interact(self, page: Any) -> None:
        if self.config.scrolling:
            await scroll_page(page, step_delay_ms=self.config.scroll_step_delay_ms)
            await page.wait_for_timeout(self.config.post_scroll_settle_ms)

        if self.config.interactions:
            await trigger_hovers(
                page,
                max_per_selector=self.config.max_hovers_per_selector,
                hover_timeout_ms=self.config.hover_timeout_ms,
                pause_ms=self.config.hover_pause_ms,
            )
            await page.wait_for_timeout(self.config.interaction_settle_ms)

    async def _extract_static_scripts(self, page: Any) -> None:
        for src in await self._evaluate_list(page, STATIC_SCRIPTS_JS):
            self.sink.offer(src, SourceTag.STATIC_DOM, self._base_url)

    async def _scan_inline_modules(self, page: Any) -> None:
        for text in await self._evaluate_list(page, INLINE_MODULE_TEXT_JS):
            for specifier in extract_module_specifiers(text):
                self.sink.offer(specifier, SourceTag.INLINE_MODULE_IMPORT, self._base_url)

    async def _discover_service_workers(self, page: Any) -> None:
        for text in await self._evaluate_list(page, SCRIPT_TEXT_JS):
            for literal in extract_service_worker_registrations(text):
                self.sink.offer(
                    literal, SourceTag.SERVICE_WORKER, self._base_url, classify_as_js=False
                )

        if self._cdp is None:
            return

        try:
            self._cdp.on("ServiceWorker.workerVersionUpdated", self._on_worker_versions)
            await self._cdp.send("ServiceWorker.enable")
        except PlaywrightError as e:
            logger.debug(f"Service worker inspection unavailable: {e}")
            return

        await page.wait_for_timeout(self.config.service_worker_settle_ms)

    async def _evaluate_list(self, page: Any, script: str) -> list[str]:
        """Evaluate a script returning a list of strings; failures yield []."""
        try:
            values = await page.evaluate(script)
        except PlaywrightError as e:
            if isinstance(e, PlaywrightTimeoutError):
                raise
            logger.debug(f"In-page extraction failed on {self.target}: {e}")
            return []
        return [v for v in values or [] if isinstance(v, str)]

    async def _attach_cdp(self, page: Any) -> Any:
        """Open a DevTools session for WebSocket and service worker signals.

        Returns None on browsers without CDP support.
        """
        try:
            cdp = await self.context.new_cdp_session(page)
            cdp.on("Network.webSocketFrameReceived", self._on_websocket_frame)
            await cdp.send("Network.enable")
        except PlaywrightError as e:
            logger.debug(f"CDP unavailable, WebSocket and service worker signals disabled: {e}")
            return None
        return cdp

    # ========== Listeners ==========

    def _on_script_report(self, src: str, kind: str, base_url: str | None = None) -> None:
        try:
            source = _REPORT_KINDS.get(kind, SourceTag.DOM_MUTATION)
            self.sink.offer(src, source, base_url or self._base_url)
        except Exception as e:
            logger.debug(f"Dropped script report {src!r}: {e}")

    def _on_response(self, response: Any) -> None:
        try:
            if response.status >= 400:
                return

            url = response.url
            content_type = response.headers.get("content-type", "")
            self.sink.offer(
                url, SourceTag.NETWORK_RESPONSE, self._base_url, content_type=content_type
            )

            lowered_url = url.lower()
            if "javascript" in content_type.lower() or any(
                hint in lowered_url for hint in SERVICE_WORKER_URL_HINTS
            ):
                self._track(self._inspect_worker_body(response))
        except Exception as e:
            logger.debug(f"Response listener error: {e}")

    async def _inspect_worker_body(self, response: Any) -> None:
        try:
            body = await response.text()
        except Exception as e:
            logger.debug(f"Could not read body of {response.url}: {e}")
            return

        if any(marker in body for marker in SERVICE_WORKER_BODY_MARKERS):
            self.sink.offer(
                response.url, SourceTag.SERVICE_WORKER, self._base_url, classify_as_js=False
            )

    def _on_websocket_frame(self, params: dict[str, Any]) -> None:
        try:
            payload = params.get("response", {}).get("payloadData", "")
            for url in extract_js_urls(payload):
                self.sink.offer(url, SourceTag.WEBSOCKET_FRAME, self._base_url)
        except Exception as e:
            logger.debug(f"WebSocket frame listener error: {e}")

    def _on_worker_versions(self, params: dict[str, Any]) -> None:
        try:
            for version in params.get("versions", []):
                script_url = version.get("scriptURL")
                if script_url:
                    self.sink.offer(
                        script_url,
                        SourceTag.SERVICE_WORKER,
                        self._base_url,
                        classify_as_js=False,
                    )
        except Exception as e:
            logger.debug(f"Service worker listener error: {e}")

    # ========== Background work ==========

    def _track(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _drain_pending(self) -> None:
        if not self._pending:
            return
        _, pending = await asyncio.wait(set(self._pending), timeout=self._drain_timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.debug(f"Cancelled {len(pending)} pending body inspections")
