"""Unit tests for SignalCollector, AssetSink and the collector state machine."""

from typing import Any

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from getjs.collector import (
    INSTRUMENTATION_JS,
    REPORT_BINDING,
    AssetSink,
    CollectorState,
    SignalCollector,
    SourceTag,
    can_transition,
    is_timeout_error,
)
from getjs.config import CollectorConfig
from getjs.exceptions import CollectorStateError
from tests.conftest import FakeCDPSession, FakeContext, FakeResponse

TARGET = "https://example.com/"


class BrokenResponse:
    """Response whose headers blow up when read."""

    url = "https://example.com/broken.js"
    status = 200

    @property
    def headers(self) -> dict[str, str]:
        raise RuntimeError("headers unavailable")


async def collect(
    config: CollectorConfig, **page_kwargs: Any
) -> tuple[SignalCollector, FakeContext, Any]:
    context = FakeContext(page_kwargs)
    collector = SignalCollector(context, config)
    result = await collector.collect(TARGET)
    return collector, context, result


class TestAssetSink:
    """Tests for the single dedup reducer."""

    def test_offer_normalizes_and_classifies(self) -> None:
        sink = AssetSink()
        assert (
            sink.offer("/static/app.js#x", SourceTag.NETWORK_RESPONSE, TARGET)
            == "https://example.com/static/app.js"
        )
        assert sink.offer("/logo.png", SourceTag.NETWORK_RESPONSE, TARGET) is None
        assert sink.urls() == ["https://example.com/static/app.js"]

    def test_first_seen_source_wins(self) -> None:
        sink = AssetSink()
        sink.offer("https://example.com/a.js", SourceTag.DOM_MUTATION, TARGET)
        duplicate = sink.offer("HTTPS://EXAMPLE.COM:443//a.js", SourceTag.NETWORK_RESPONSE, TARGET)
        assert duplicate is None
        assert sink.sources() == {"https://example.com/a.js": SourceTag.DOM_MUTATION}
        assert len(sink) == 1

    def test_unclassified_offer_skips_js_check(self) -> None:
        sink = AssetSink()
        url = sink.offer("/worker", SourceTag.SERVICE_WORKER, TARGET, classify_as_js=False)
        assert url == "https://example.com/worker"

    def test_malformed_urls_ignored(self) -> None:
        sink = AssetSink()
        assert sink.offer("javascript:void(0)", SourceTag.STATIC_DOM, TARGET) is None
        assert sink.offer("", SourceTag.STATIC_DOM, TARGET) is None
        assert sink.urls() == []


class TestStateMachine:
    """Tests for collector state transitions."""

    @pytest.mark.parametrize(
        "current,target",
        [
            (CollectorState.IDLE, CollectorState.INITIALIZING),
            (CollectorState.NAVIGATING, CollectorState.EXTRACTING),
            (CollectorState.INTERACTING, CollectorState.FINALIZING),
            (CollectorState.FINALIZING, CollectorState.DONE),
            (CollectorState.NAVIGATING, CollectorState.FINALIZING),
            (CollectorState.INITIALIZING, CollectorState.FINALIZING),
        ],
    )
    def test_legal_transitions(self, current: CollectorState, target: CollectorState) -> None:
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (CollectorState.IDLE, CollectorState.NAVIGATING),
            (CollectorState.EXTRACTING, CollectorState.NAVIGATING),
            (CollectorState.DONE, CollectorState.IDLE),
            (CollectorState.DONE, CollectorState.FINALIZING),
            (CollectorState.NAVIGATING, CollectorState.DONE),
        ],
    )
    def test_illegal_transitions(self, current: CollectorState, target: CollectorState) -> None:
        assert not can_transition(current, target)

    async def test_collector_is_single_use(self, fast_collector_config: CollectorConfig) -> None:
        collector, _, _ = await collect(fast_collector_config)
        assert collector.state is CollectorState.DONE

        with pytest.raises(CollectorStateError):
            await collector.collect(TARGET)


class TestTimeoutDetection:
    def test_playwright_timeout(self) -> None:
        assert is_timeout_error(PlaywrightTimeoutError("Timeout 30000ms exceeded."))

    def test_message_contains_timeout(self) -> None:
        assert is_timeout_error(PlaywrightError("Navigation TIMEOUT while loading"))

    def test_other_errors(self) -> None:
        assert not is_timeout_error(PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))


class TestCollect:
    """End-to-end collection against scripted fake pages."""

    async def test_static_injected_and_lazy_scripts(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        """Static script, injected protocol-relative script and inline dynamic import."""
        _, _, result = await collect(
            fast_collector_config,
            responses=[
                FakeResponse(TARGET, content_type="text/html"),
                FakeResponse("https://example.com/app.js", content_type="application/javascript"),
                FakeResponse("https://example.com/logo.png", content_type="image/png"),
            ],
            reports=[("//cdn.example.com/vendor.abc12345.js", "creation")],
            static_scripts=["https://example.com/app.js"],
            inline_modules=['import("./lazy.js")'],
        )

        assert result.urls == [
            "https://cdn.example.com/vendor.abc12345.js",
            "https://example.com/app.js",
            "https://example.com/lazy.js",
        ]
        assert result.timed_out is False
        assert result.state is CollectorState.DONE
        assert result.sources == {
            "https://cdn.example.com/vendor.abc12345.js": SourceTag.DYNAMIC_CREATION,
            "https://example.com/app.js": SourceTag.NETWORK_RESPONSE,
            "https://example.com/lazy.js": SourceTag.INLINE_MODULE_IMPORT,
        }

    async def test_instrumentation_installed_per_context(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        _, context, _ = await collect(fast_collector_config)

        assert REPORT_BINDING in context.exposed
        assert INSTRUMENTATION_JS in context.init_scripts
        page = context.pages[0]
        assert page.default_timeout == fast_collector_config.timeout_ms
        assert page.goto_calls == [
            {
                "url": TARGET,
                "wait_until": "networkidle",
                "timeout": fast_collector_config.timeout_ms,
            }
        ]
        assert page.closed

    async def test_mutation_reports_resolved_against_page(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        _, _, result = await collect(
            fast_collector_config,
            reports=[("/js/widget.js", "mutation"), ("/js/widget.js", "creation")],
        )

        assert result.urls == ["https://example.com/js/widget.js"]
        assert result.sources["https://example.com/js/widget.js"] == SourceTag.DOM_MUTATION

    async def test_script_elements_must_classify_as_js(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        _, _, result = await collect(
            fast_collector_config,
            reports=[("/api/user?id=1", "mutation"), ("/styles/site.css", "creation")],
            static_scripts=["https://example.com/track/pixel.gif", "/bundle.mjs"],
        )

        assert result.urls == ["https://example.com/bundle.mjs"]
        assert result.sources["https://example.com/bundle.mjs"] == SourceTag.STATIC_DOM

    async def test_error_responses_ignored(self, fast_collector_config: CollectorConfig) -> None:
        _, _, result = await collect(
            fast_collector_config,
            responses=[
                FakeResponse("https://example.com/missing.js", status=404),
                FakeResponse("https://example.com/ok.js", status=304),
            ],
        )

        assert result.urls == ["https://example.com/ok.js"]

    async def test_websocket_frames(self, fast_collector_config: CollectorConfig) -> None:
        _, context, result = await collect(
            fast_collector_config,
            ws_frames=[
                '{"type":"update","chunk":"https://cdn.example.com/chunks/42.chunk.js"}',
                "no urls here",
            ],
        )

        assert "Network.enable" in context.cdp.sent
        assert result.urls == ["https://cdn.example.com/chunks/42.chunk.js"]
        assert result.sources[result.urls[0]] == SourceTag.WEBSOCKET_FRAME

    async def test_service_workers(self, fast_collector_config: CollectorConfig) -> None:
        context = FakeContext(
            {
                "script_texts": [
                    "if (navigator.serviceWorker) navigator.serviceWorker.register('/sw.js')"
                ],
                "responses": [
                    FakeResponse(
                        "https://example.com/service-worker",
                        content_type="text/plain",
                        body="self.addEventListener('fetch', () => {})",
                    )
                ],
            },
            cdp=FakeCDPSession(worker_versions=["https://example.com/workers/push"]),
        )
        result = await SignalCollector(context, fast_collector_config).collect(TARGET)

        assert result.urls == [
            "https://example.com/service-worker",
            "https://example.com/sw.js",
            "https://example.com/workers/push",
        ]
        assert set(result.sources.values()) == {SourceTag.SERVICE_WORKER}
        assert "ServiceWorker.enable" in context.cdp.sent

    async def test_cdp_unavailable(self, fast_collector_config: CollectorConfig) -> None:
        context = FakeContext(
            {"static_scripts": ["https://example.com/main.js"]},
            cdp_error=PlaywrightError("CDP session is only available in Chromium"),
        )
        result = await SignalCollector(context, fast_collector_config).collect(TARGET)

        assert result.urls == ["https://example.com/main.js"]
        assert context.cdp.sent == []

    async def test_timeout_returns_partial_results(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        collector, context, result = await collect(
            fast_collector_config,
            responses=[FakeResponse("https://example.com/early.js")],
            static_scripts=["https://example.com/never-reached.js"],
            goto_errors={TARGET: PlaywrightTimeoutError("Timeout 5000ms exceeded.")},
        )

        assert result.timed_out is True
        assert result.urls == ["https://example.com/early.js"]
        assert collector.state is CollectorState.DONE
        assert context.pages[0].closed

    async def test_non_timeout_error_propagates(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        context = FakeContext(
            {"goto_errors": {TARGET: PlaywrightError("net::ERR_NAME_NOT_RESOLVED")}}
        )
        collector = SignalCollector(context, fast_collector_config)

        with pytest.raises(PlaywrightError, match="ERR_NAME_NOT_RESOLVED"):
            await collector.collect(TARGET)

        assert collector.state is CollectorState.DONE
        assert context.pages[0].closed

    async def test_listener_errors_swallowed(self, fast_collector_config: CollectorConfig) -> None:
        _, _, result = await collect(
            fast_collector_config,
            responses=[BrokenResponse(), FakeResponse("https://example.com/fine.js")],
        )

        assert result.urls == ["https://example.com/fine.js"]

    async def test_phase_delays_come_from_config(self) -> None:
        config = CollectorConfig(
            wait_ms=1234,
            initial_settle_ms=11,
            post_scroll_settle_ms=22,
            interaction_settle_ms=33,
            service_worker_settle_ms=44,
            scroll_step_delay_ms=5,
            hover_pause_ms=0,
        )
        _, context, _ = await collect(config, scroll_height=1000, viewport_height=1000)
        page = context.pages[0]

        assert page.waits[0] == 11
        assert page.waits[-1] == 1234
        assert 22 in page.waits
        assert 33 in page.waits
        assert 44 in page.waits
        assert page.scroll_steps == 2

    async def test_scrolling_and_interactions_can_be_disabled(
        self, fast_collector_config: CollectorConfig
    ) -> None:
        config = fast_collector_config.model_copy(
            update={"scrolling": False, "interactions": False}
        )
        _, context, _ = await collect(config, scroll_height=5000)

        assert context.pages[0].scroll_steps == 0

    async def test_get_results_during_run(self, fast_collector_config: CollectorConfig) -> None:
        context = FakeContext()
        collector = SignalCollector(context, fast_collector_config)
        collector.sink.offer("https://example.com/b.js", SourceTag.STATIC_DOM, TARGET)
        collector.sink.offer("https://example.com/a.js", SourceTag.STATIC_DOM, TARGET)

        assert collector.get_results() == ["https://example.com/a.js", "https://example.com/b.js"]
