"""End-to-end collection run.

run_getjs() wires the pieces together: resolve session material, collect
every target on one browser, apply domain filters, write outputs (or print
to stdout), optionally download the scripts inside the same browser session,
and print a summary. Status goes to stderr so stdout stays pipeable.
"""

import dataclasses
import logging
import time
from collections import defaultdict
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from getjs.assets import DownloadReport, JSDownloader
from getjs.auth import SessionCredentials
from getjs.config import GetJSConfig
from getjs.crawler import Crawler, TargetResult
from getjs.exceptions import DownloadError
from getjs.outputs import OutputManager
from getjs.rules import DomainFilter

logger = logging.getLogger(__name__)


def apply_filter(result: TargetResult, domain_filter: DomainFilter) -> TargetResult:
    """Return a copy of the result keeping only URLs the filter allows."""
    if domain_filter.is_identity:
        return result
    urls = domain_filter.apply(result.urls)
    kept = set(urls)
    sources = {url: tag for url, tag in result.sources.items() if url in kept}
    return dataclasses.replace(result, urls=urls, sources=sources)


def _print_header(console: Console, config: GetJSConfig, targets: list[str]) -> None:
    console.print(Panel(f"[bold cyan]getjs[/] - {len(targets)} target(s)", expand=False))
    for target in targets[:10]:
        console.print(f"  • {target}", markup=False, highlight=False)
    if len(targets) > 10:
        console.print(f"  [dim]... and {len(targets) - 10} more[/dim]")

    if config.filters.allow_domains:
        console.print(f"[bold]Allow domains:[/] {', '.join(config.filters.allow_domains)}")
    if config.filters.deny_domains:
        console.print(f"[bold]Deny domains:[/] {', '.join(config.filters.deny_domains)}")
    if config.output.resume:
        console.print("[bold]Mode:[/] resume (append new URLs only)")
    console.print()


def _build_summary_table(summary: dict[str, Any]) -> Table:
    summary_table = Table(show_header=False, box=None, padding=(0, 2))
    summary_table.add_column("Metric", style="cyan", no_wrap=True)
    summary_table.add_column("Value", style="green bold")

    summary_table.add_row("Targets", str(summary["targets"]))
    if summary["targets_failed"] > 0:
        summary_table.add_row("Targets failed", f"[red]{summary['targets_failed']}[/red]")
    if summary["timed_out"] > 0:
        summary_table.add_row("Timed out (partial)", f"[yellow]{summary['timed_out']}[/yellow]")
    summary_table.add_row("JavaScript URLs", str(summary["urls"]))

    for path, count in summary["written"].items():
        summary_table.add_row("Written", f"{count} → {path}")

    if summary["downloaded"] or summary["download_failed"] or summary["download_skipped"]:
        summary_table.add_row("Files downloaded", str(summary["downloaded"]))
        if summary["download_skipped"] > 0:
            summary_table.add_row(
                "Duplicates skipped", f"[yellow]{summary['download_skipped']}[/yellow]"
            )
        if summary["download_failed"] > 0:
            summary_table.add_row("Downloads failed", f"[red]{summary['download_failed']}[/red]")

    execution_time = summary["execution_time"]
    if execution_time < 60:
        time_str = f"{execution_time:.2f}s"
    else:
        minutes = int(execution_time // 60)
        time_str = f"{minutes}m {execution_time % 60:.1f}s"
    summary_table.add_row("Execution time", time_str)

    return summary_table


def _build_error_table(errors: list[dict[str, str]]) -> Table | None:
    if not errors:
        return None

    grouped: dict[str, list[dict[str, str]]] = defaultdict(list)
    for error in errors:
        grouped[f"{error['category']}/{error['type']}"].append(error)

    error_table = Table(show_header=True, box=None)
    error_table.add_column("Type", style="yellow", no_wrap=True)
    error_table.add_column("Count", style="red", justify="right")
    error_table.add_column("Examples", style="dim")

    for error_type, instances in grouped.items():
        examples = [f"{e['url']}: {e['error'][:80]}" for e in instances[:3]]
        example_text = "\n".join(examples)
        if len(instances) > 3:
            example_text += f"\n... and {len(instances) - 3} more"
        error_table.add_row(error_type, str(len(instances)), example_text)

    return error_table


async def _run_downloads(
    downloader: JSDownloader, config: GetJSConfig, urls: list[str]
) -> DownloadReport:
    report = DownloadReport()
    if config.download.fetch_all and urls:
        report = await downloader.download_all(urls)

    if config.download.fetch_one:
        try:
            report.downloaded.append(await downloader.download_one(config.download.fetch_one))
        except DownloadError as e:
            report.errors.append({"url": e.url, "error": e.reason, "type": "DownloadError"})

    return report


async def _download(
    crawler: Crawler,
    config: GetJSConfig,
    session: SessionCredentials,
    urls: list[str],
    target: str | None = None,
) -> DownloadReport:
    """Run --fetch-all and --fetch-one, through the browser session when enabled."""
    if config.download.use_browser_context:
        async with crawler.request_context(target) as context:
            downloader = JSDownloader(config.download, request_context=context)
            return await _run_downloads(downloader, config, urls)

    downloader = JSDownloader(config.download, headers=session.headers)
    return await _run_downloads(downloader, config, urls)


async def run_getjs(
    config: GetJSConfig,
    targets: list[str],
    session: SessionCredentials | None = None,
    *,
    console: Console | None = None,
    stdout: Console | None = None,
) -> dict[str, Any]:
    """Run the complete collection pipeline.

    Args:
        config: Validated GetJSConfig instance
        targets: Validated target URLs
        session: Resolved session material (resolved from config if omitted)
        console: Console for status output (defaults to stderr)
        stdout: Console receiving URLs when no output file is configured

    Returns:
        Dictionary with run statistics:
        - targets / targets_failed / timed_out: per-target outcome counts
        - urls: number of distinct URLs after filtering
        - results: target -> sorted URL list
        - written: output path -> URLs written
        - downloaded / download_skipped / download_failed: download counts
        - errors: list of {"category", "type", "url", "error"}
        - execution_time: seconds

    Raises:
        ConfigError: For unusable session material (before any browser work)
        NavigationError: When the only target fails to load
    """
    console = console or Console(stderr=True)
    stdout = stdout or Console(soft_wrap=True, highlight=False)
    start_time = time.time()

    if session is None:
        session = SessionCredentials.resolve(
            config.session.cookies,
            config.session.headers,
            config.session.local_storage,
            single_target=len(targets) == 1,
        )
    domain_filter = DomainFilter(config.filters.allow_domains, config.filters.deny_domains)
    output_manager = OutputManager(config.output)

    _print_header(console, config, targets)

    errors: list[dict[str, str]] = []
    written: dict[str, int] = {}
    report = DownloadReport()

    async with Crawler(config, session) as crawler:
        with Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("•"),
            TimeElapsedColumn(),
            console=console,
            expand=True,
        ) as progress:
            task = progress.add_task("Collecting", total=len(targets))

            def advance(result: TargetResult) -> None:
                progress.advance(task)
                progress.update(task, description=f"Collected {result.target}")

            raw_results = await crawler.crawl(targets, on_result=advance)

        results = {target: apply_filter(r, domain_filter) for target, r in raw_results.items()}
        combined = OutputManager.combine(results)

        for result in results.values():
            if result.failed:
                errors.append(
                    {
                        "category": "collect",
                        "type": "TargetFailed",
                        "url": result.target,
                        "error": result.error or "",
                    }
                )

        if config.output.has_file_destination:
            written = await output_manager.write_all(results)
        else:
            for url in combined:
                stdout.print(url, markup=False)

        if config.download.fetch_all or config.download.fetch_one:
            single_target = targets[0] if len(targets) == 1 else None
            report = await _download(crawler, config, session, combined, single_target)

    errors.extend({"category": "download", **error} for error in report.errors)

    summary: dict[str, Any] = {
        "targets": len(targets),
        "targets_failed": sum(1 for r in results.values() if r.failed),
        "timed_out": sum(1 for r in results.values() if r.timed_out),
        "urls": len(combined),
        "results": {target: r.urls for target, r in results.items()},
        "written": written,
        "downloaded": len(report.downloaded),
        "download_skipped": len(report.skipped),
        "download_failed": len(report.errors),
        "download_dir": str(Path(config.download.directory)),
        "errors": errors,
        "execution_time": time.time() - start_time,
    }

    console.print()
    console.print(_build_summary_table(summary))
    error_table = _build_error_table(errors)
    if error_table is not None:
        console.print()
        console.print("[bold red]Errors[/]")
        console.print(error_table)

    return summary
