"""Output routing and resume-safe merging of discovered URLs.

Three independent destinations: one file per target in an output directory,
a combined (or single-target) file, and a JSON report. Line files hold one
URL per line; '#' comments and blank lines are ignored when read back. In
resume mode files are only ever appended to, with exactly the URLs they do
not already contain, so re-running the same collection is a no-op.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

import aiofiles

from getjs.config import OutputConfig
from getjs.rules import URLNormalizer

if TYPE_CHECKING:
    from getjs.crawler import TargetResult

logger = logging.getLogger(__name__)


class OutputManager:
    """Writes discovered URLs to the configured destinations.

    Examples:
        >>> manager = OutputManager(OutputConfig(output_dir="out", resume=True))
        >>> manager.target_output_path("https://www.example.com/login")
        PosixPath('out/www_example_com_js.txt')
        >>> written = await manager.merge(path, ["https://example.com/a.js"])
    """

    def __init__(self, config: OutputConfig) -> None:
        self.config = config
        self.output_dir = Path(config.output_dir) if config.output_dir else None

    def target_output_path(self, target: str) -> Path:
        """Per-target file path: <output_dir>/<host with dots as underscores>_js.txt."""
        host = URLNormalizer.hostname(target) or "unknown"
        base = self.output_dir if self.output_dir is not None else Path(".")
        return base / f"{host.replace('.', '_')}_js.txt"

    async def read_existing(self, path: Path) -> list[str]:
        """Read URLs already present in a line file (empty if missing)."""
        if not path.exists():
            return []

        async with aiofiles.open(path, encoding="utf-8") as f:
            content = await f.read()

        urls = []
        for line in content.splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                urls.append(stripped)
        return urls

    async def merge(self, path: Path, urls: Iterable[str], resume: bool | None = None) -> list[str]:
        """Write URLs to a line file.

        Args:
            path: Destination file
            urls: URLs in the order they should appear
            resume: Append only new URLs instead of overwriting
                (defaults to the configured mode)

        Returns:
            The URLs actually written
        """
        if resume is None:
            resume = self.config.resume

        ordered = list(dict.fromkeys(urls))
        path.parent.mkdir(parents=True, exist_ok=True)

        if not resume:
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write("".join(f"{url}\n" for url in ordered))
            logger.debug(f"Wrote {len(ordered)} URLs to {path}")
            return ordered

        existing = set(await self.read_existing(path))
        new_urls = [url for url in ordered if url not in existing]
        if not new_urls:
            logger.debug(f"No new URLs for {path}")
            return []

        prefix = ""
        if path.exists() and path.stat().st_size > 0:
            async with aiofiles.open(path, "rb") as f:
                await f.seek(-1, 2)
                if await f.read(1) != b"\n":
                    prefix = "\n"

        async with aiofiles.open(path, "a", encoding="utf-8") as f:
            await f.write(prefix + "".join(f"{url}\n" for url in new_urls))

        logger.debug(f"Appended {len(new_urls)} new URLs to {path}")
        return new_urls

    @staticmethod
    def combine(results: Mapping[str, "TargetResult"]) -> list[str]:
        """Sorted union of URLs across every target."""
        combined: set[str] = set()
        for result in results.values():
            combined.update(result.urls)
        return sorted(combined)

    async def write_json(self, path: Path, results: Mapping[str, "TargetResult"]) -> None:
        """Write {target: {"count": N, "urls": [...]}} with sorted URLs."""
        report = {
            target: {"count": len(result.urls), "urls": sorted(result.urls)}
            for target, result in results.items()
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(report, indent=2) + "\n")
        logger.debug(f"Wrote JSON report for {len(report)} targets to {path}")

    async def write_all(self, results: Mapping[str, "TargetResult"]) -> dict[str, int]:
        """Route results to every configured destination.

        Returns:
            Destination path -> number of URLs written
        """
        written: dict[str, int] = {}

        if self.output_dir is not None:
            for result in results.values():
                if result.failed:
                    continue
                path = self.target_output_path(result.target)
                written[str(path)] = len(await self.merge(path, result.urls))

        if self.config.output_file:
            path = Path(self.config.output_file)
            written[str(path)] = len(await self.merge(path, self.combine(results)))

        if self.config.json_file:
            path = Path(self.config.json_file)
            await self.write_json(path, results)
            written[str(path)] = sum(len(r.urls) for r in results.values())

        return written
