"""Pytest fixtures and fake Playwright collaborators for getjs tests.

The fakes implement just the slice of the Playwright async API that the
collector, interaction engine, crawler and downloader touch. A FakePage
replays a scripted page load: network responses, in-page script reports
(as the init-script instrumentation would send them) and WebSocket frames
all fire during goto().
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from getjs.collector import (
    INLINE_MODULE_TEXT_JS,
    REPORT_BINDING,
    SCRIPT_TEXT_JS,
    STATIC_SCRIPTS_JS,
)
from getjs.config import CollectorConfig, GetJSConfig
from getjs.interactions import SCROLL_METRICS_JS, SCROLL_RESET_JS, SCROLL_STEP_JS


class FakeResponse:
    """Network response as delivered to page.on("response")."""

    def __init__(
        self,
        url: str,
        status: int = 200,
        content_type: str = "",
        body: str = "",
    ) -> None:
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type} if content_type else {}
        self._body = body

    async def text(self) -> str:
        return self._body


class FakeCDPSession:
    """DevTools session recording subscriptions and commands."""

    def __init__(self, worker_versions: list[str] | None = None) -> None:
        self.handlers: dict[str, list[Callable[[dict[str, Any]], None]]] = defaultdict(list)
        self.sent: list[str] = []
        self.worker_versions = worker_versions or []

    def on(self, event: str, handler: Callable[[dict[str, Any]], None]) -> None:
        self.handlers[event].append(handler)

    def emit(self, event: str, params: dict[str, Any]) -> None:
        for handler in self.handlers[event]:
            handler(params)

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.sent.append(method)
        if method == "ServiceWorker.enable" and self.worker_versions:
            self.emit(
                "ServiceWorker.workerVersionUpdated",
                {"versions": [{"scriptURL": url} for url in self.worker_versions]},
            )
        return {}


class FakeElement:
    """Element handle whose hover can be made to fail."""

    def __init__(self, name: str = "el", fail: bool = False) -> None:
        self.name = name
        self.fail = fail
        self.hover_calls: list[int] = []

    async def hover(self, timeout: float | None = None) -> None:
        self.hover_calls.append(int(timeout or 0))
        if self.fail:
            raise PlaywrightError("Element is not visible")


class FakePage:
    """Scripted page load.

    Everything in `responses`, `reports` and `ws_frames` is delivered while
    goto() runs; a matching `goto_errors` entry is raised afterwards, so signals seen before a
    timeout still count.
    """

    def __init__(
        self,
        context: "FakeContext",
        *,
        responses: list[Any] | None = None,
        reports: list[tuple[str, str]] | None = None,
        ws_frames: list[str] | None = None,
        static_scripts: list[str] | None = None,
        inline_modules: list[str] | None = None,
        script_texts: list[str] | None = None,
        elements: dict[str, list[FakeElement]] | None = None,
        selector_errors: set[str] | None = None,
        goto_errors: dict[str, BaseException] | None = None,
        goto_delay: float = 0.0,
        scroll_height: int = 0,
        viewport_height: int = 800,
        redirect_to: str | None = None,
    ) -> None:
        self.context = context
        self.url = "about:blank"
        self.handlers: dict[str, list[Callable[[Any], None]]] = defaultdict(list)
        self.responses = responses or []
        self.reports = reports or []
        self.ws_frames = ws_frames or []
        self.static_scripts = static_scripts or []
        self.inline_modules = inline_modules or []
        self.script_texts = script_texts or []
        self.elements = elements or {}
        self.selector_errors = selector_errors or set()
        self.goto_errors = goto_errors or {}
        self.goto_delay = goto_delay
        self.scroll_height = scroll_height
        self.viewport_height = viewport_height
        self.redirect_to = redirect_to

        self.default_timeout: float | None = None
        self.goto_calls: list[dict[str, Any]] = []
        self.waits: list[int] = []
        self.evaluated: list[str] = []
        self.scroll_steps = 0
        self.closed = False

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        self.handlers[event].append(handler)

    async def goto(
        self, url: str, wait_until: str | None = None, timeout: float | None = None
    ) -> None:
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        browser = self.context.browser
        if browser is not None:
            browser.navigation_started(url)

        try:
            if self.goto_delay:
                await asyncio.sleep(self.goto_delay)

            for response in self.responses:
                for handler in self.handlers["response"]:
                    handler(response)

            for src, kind in self.reports:
                self.context.exposed[REPORT_BINDING](src, kind, url)

            for payload in self.ws_frames:
                self.context.cdp.emit(
                    "Network.webSocketFrameReceived",
                    {"requestId": "1", "response": {"opcode": 1, "payloadData": payload}},
                )

            if url in self.goto_errors:
                raise self.goto_errors[url]

            self.url = self.redirect_to or url
        finally:
            if browser is not None:
                browser.navigation_finished(url)

    async def wait_for_timeout(self, timeout: float) -> None:
        self.waits.append(int(timeout))

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluated.append(script)
        if script == STATIC_SCRIPTS_JS:
            return list(self.static_scripts)
        if script == INLINE_MODULE_TEXT_JS:
            return list(self.inline_modules)
        if script == SCRIPT_TEXT_JS:
            return list(self.script_texts)
        if script == SCROLL_METRICS_JS:
            return {"height": self.scroll_height, "viewport": self.viewport_height}
        if script == SCROLL_STEP_JS:
            self.scroll_steps += 1
            return self.scroll_height
        if script == SCROLL_RESET_JS:
            return None
        raise AssertionError(f"Unexpected script evaluated: {script[:60]}")

    async def query_selector_all(self, selector: str) -> list[FakeElement]:
        if selector in self.selector_errors:
            raise PlaywrightError(f"Invalid selector {selector}")
        return list(self.elements.get(selector, []))

    async def close(self) -> None:
        self.closed = True


class FakeAPIResponse:
    def __init__(self, status: int = 200, body: bytes = b"") -> None:
        self.status = status
        self.ok = 200 <= status < 300
        self._body = body
        self.disposed = False

    async def body(self) -> bytes:
        return self._body

    async def dispose(self) -> None:
        self.disposed = True


class FakeAPIRequest:
    """context.request: maps URL -> FakeAPIResponse or exception."""

    def __init__(self, routes: dict[str, Any] | None = None) -> None:
        self.routes = routes or {}
        self.calls: list[dict[str, Any]] = []

    async def get(self, url: str, **kwargs: Any) -> FakeAPIResponse:
        self.calls.append({"url": url, **kwargs})
        route = self.routes.get(url)
        if route is None:
            return FakeAPIResponse(status=404)
        if isinstance(route, BaseException):
            raise route
        return route


class FakeContext:
    """Browser context recording everything installed on it."""

    def __init__(
        self,
        page_kwargs: dict[str, Any] | None = None,
        *,
        browser: "FakeBrowser | None" = None,
        cdp: FakeCDPSession | None = None,
        cdp_error: BaseException | None = None,
        options: dict[str, Any] | None = None,
        request_routes: dict[str, Any] | None = None,
    ) -> None:
        self.page_kwargs = page_kwargs or {}
        self.browser = browser
        self.cdp = cdp or FakeCDPSession()
        self.cdp_error = cdp_error
        self.options = options or {}
        self.request = FakeAPIRequest(request_routes)

        self.exposed: dict[str, Callable[..., Any]] = {}
        self.init_scripts: list[str] = []
        self.cookies: list[dict[str, Any]] = []
        self.pages: list[FakePage] = []
        self.closed = False

    async def expose_function(self, name: str, callback: Callable[..., Any]) -> None:
        if name in self.exposed:
            raise PlaywrightError(f'Function "{name}" has been already registered')
        self.exposed[name] = callback

    async def add_init_script(self, script: str | None = None, path: str | None = None) -> None:
        self.init_scripts.append(script or "")

    async def add_cookies(self, cookies: list[dict[str, Any]]) -> None:
        self.cookies.extend(cookies)

    async def new_page(self) -> FakePage:
        page = FakePage(self, **self.page_kwargs)
        self.pages.append(page)
        return page

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        if self.cdp_error is not None:
            raise self.cdp_error
        return self.cdp

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    """Shared browser handing out FakeContexts and tracking concurrency."""

    def __init__(
        self,
        page_kwargs: dict[str, Any] | None = None,
        request_routes: dict[str, Any] | None = None,
    ) -> None:
        self.page_kwargs = page_kwargs or {}
        self.request_routes = request_routes
        self.contexts: list[FakeContext] = []
        self.close_calls = 0
        self.active = 0
        self.max_active = 0
        self.events: list[tuple[str, str]] = []

    async def new_context(self, **options: Any) -> FakeContext:
        context = FakeContext(
            self.page_kwargs, browser=self, options=options, request_routes=self.request_routes
        )
        self.contexts.append(context)
        return context

    def navigation_started(self, url: str) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.events.append(("start", url))

    def navigation_finished(self, url: str) -> None:
        self.active -= 1
        self.events.append(("end", url))

    async def close(self) -> None:
        self.close_calls += 1


def make_playwright(browser: FakeBrowser) -> MagicMock:
    """Playwright driver object whose chromium.launch() returns the fake browser."""
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    return playwright


@pytest.fixture
def fast_collector_config() -> CollectorConfig:
    """Collector config with every settle delay at zero."""
    return CollectorConfig(
        timeout_ms=5000,
        wait_ms=0,
        initial_settle_ms=0,
        scroll_step_delay_ms=0,
        post_scroll_settle_ms=0,
        interaction_settle_ms=0,
        service_worker_settle_ms=0,
        hover_pause_ms=0,
    )


@pytest.fixture
def fast_config(fast_collector_config: CollectorConfig) -> GetJSConfig:
    """GetJSConfig with zero delays, suitable for crawler tests."""
    return GetJSConfig(collector=fast_collector_config)
