"""Page interactions that provoke lazy-loaded scripts.

Scrolling fires intersection observers and infinite-scroll loaders, hovering
fires mouseover-driven prefetchers and menus. Individual failures never abort
the sequence: an element that detaches or is covered is simply skipped.
"""

import logging
from typing import Any

from playwright.async_api import Error as PlaywrightError

logger = logging.getLogger(__name__)

INTERACTIVE_SELECTORS = (
    "button",
    "a[href]",
    "[onclick]",
    "[data-toggle]",
    "[data-src]",
    ".lazy",
    '[class*="lazy"]',
)

SCROLL_METRICS_JS = """() => ({
    height: document.body ? document.body.scrollHeight : 0,
    viewport: window.innerHeight || 0,
})"""

# Returns the document height after the step so growing pages keep scrolling
SCROLL_STEP_JS = """(distance) => {
    window.scrollBy(0, distance);
    return document.body ? document.body.scrollHeight : 0;
}"""

SCROLL_RESET_JS = "() => window.scrollTo(0, 0)"


async def scroll_page(page: Any, *, step_delay_ms: int = 200, max_steps: int = 200) -> int:
    """Scroll to the bottom in half-viewport steps, then back to the top.

    Args:
        page: Playwright page
        step_delay_ms: Pause after each step
        max_steps: Upper bound for pages that keep growing while scrolled

    Returns:
        Number of scroll steps taken
    """
    try:
        metrics = await page.evaluate(SCROLL_METRICS_JS)
    except PlaywrightError as e:
        logger.debug(f"Could not read scroll metrics: {e}")
        return 0

    height = int(metrics.get("height") or 0)
    distance = max(int(metrics.get("viewport") or 0) // 2, 1)

    steps = 0
    scrolled = 0
    while scrolled < height and steps < max_steps:
        try:
            height = int(await page.evaluate(SCROLL_STEP_JS, distance) or 0)
        except PlaywrightError as e:
            logger.debug(f"Scrolling stopped after {steps} steps: {e}")
            break
        scrolled += distance
        steps += 1
        await page.wait_for_timeout(step_delay_ms)

    try:
        await page.evaluate(SCROLL_RESET_JS)
    except PlaywrightError as e:
        logger.debug(f"Could not scroll back to top: {e}")

    return steps


async def trigger_hovers(
    page: Any,
    *,
    selectors: tuple[str, ...] = INTERACTIVE_SELECTORS,
    max_per_selector: int = 10,
    hover_timeout_ms: int = 500,
    pause_ms: int = 100,
) -> int:
    """Hover the first few matches of each interactive selector.

    Args:
        page: Playwright page
        selectors: CSS selectors, processed in order
        max_per_selector: Elements hovered per selector
        hover_timeout_ms: Per-hover timeout
        pause_ms: Pause after each successful hover

    Returns:
        Number of successful hovers
    """
    hovered = 0
    for selector in selectors:
        try:
            elements = await page.query_selector_all(selector)
        except PlaywrightError as e:
            logger.debug(f"Selector {selector!r} failed: {e}")
            continue

        for element in elements[:max_per_selector]:
            try:
                await element.hover(timeout=hover_timeout_ms)
            except PlaywrightError:
                continue
            hovered += 1
            await page.wait_for_timeout(pause_ms)

    logger.debug(f"Hovered {hovered} elements")
    return hovered
