"""Command line interface.

CLI module using Typer with Rich-formatted output for the collect, download and
validate commands. Status output goes to stderr; discovered URLs printed to
stdout can be piped straight into other tools.
"""

# ruff: noqa: B008

import asyncio
import sys
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table
from rich.traceback import install as install_rich_traceback

from getjs import __version__
from getjs.auth import SessionCredentials, parse_headers, parse_local_storage
from getjs.config import (
    DownloadConfig,
    GetJSConfig,
    load_config,
    read_target_list,
    validate_target,
)
from getjs.exceptions import ConfigError, DownloadError, GetJSError
from getjs.utils import setup_logging

install_rich_traceback(show_locals=False)

console = Console(stderr=True)

app = typer.Typer(
    name="getjs",
    help="getjs - discover every JavaScript file a web page loads",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"getjs version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """getjs - discover every JavaScript file a web page loads."""
    pass


def collect_targets(url: str | None, url_list: Path | None) -> list[str]:
    """Targets from --url plus --list, falling back to stdin when neither is given.

    Duplicates are dropped, keeping first-seen order.

    Raises:
        ConfigError: If no target was given or one is not a valid URL
    """
    targets: list[str] = []
    if url:
        targets.append(validate_target(url))
    if url_list is not None:
        targets.extend(read_target_list(url_list))

    if not targets and not sys.stdin.isatty():
        for line in sys.stdin.read().splitlines():
            stripped = line.strip()
            if stripped and not stripped.startswith("#"):
                targets.append(validate_target(stripped))

    if not targets:
        raise ConfigError("No targets given: use --url, --list, or pipe URLs on stdin")

    return list(dict.fromkeys(targets))


def build_config(base: GetJSConfig, overrides: dict[str, dict[str, Any]]) -> GetJSConfig:
    """Apply CLI overrides (section -> field -> value) on top of a base config.

    None values mean "not given on the command line" and leave the base untouched.

    Raises:
        ConfigError: If the merged configuration fails validation
    """
    data = base.model_dump()
    for section, values in overrides.items():
        for key, value in values.items():
            if value is None:
                continue
            if section == "root":
                data[key] = value
            else:
                data[section][key] = value
    try:
        return GetJSConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid options:\n{e}") from e


@app.command()
def collect(
    url: str | None = typer.Option(None, "--url", "-u", help="Target URL"),
    url_list: Path | None = typer.Option(
        None, "--list", "-l", help="File with one target URL per line"
    ),
    output: str | None = typer.Option(
        None, "--output", "-o", help="Write all URLs to this file (combined for many targets)"
    ),
    output_dir: str | None = typer.Option(
        None, "--output-dir", help="Write one <host>_js.txt file per target"
    ),
    json_file: str | None = typer.Option(None, "--json", help="Write a JSON report"),
    resume: bool | None = typer.Option(
        None, "--resume", help="Append only URLs not already in the output files"
    ),
    headless: bool | None = typer.Option(
        None, "--headless/--no-headless", help="Run the browser headless (default: headless)"
    ),
    timeout: float | None = typer.Option(
        None, "--timeout", "-t", help="Navigation timeout in seconds (default: 30)", min=1
    ),
    wait: float | None = typer.Option(
        None, "--wait", "-w", help="Final wait for late requests in seconds (default: 5)", min=0
    ),
    no_scroll: bool = typer.Option(False, "--no-scroll", help="Disable scrolling"),
    user_agent: str | None = typer.Option(None, "--user-agent", "-A", help="Custom User-Agent"),
    proxy: str | None = typer.Option(None, "--proxy", "-x", help="Proxy server URL"),
    cookies: str | None = typer.Option(
        None,
        "--cookies",
        "-c",
        help="JSON cookie file, or a raw 'a=1; b=2' string (single target only)",
    ),
    header: list[str] | None = typer.Option(
        None, "--header", "-H", help="Extra header 'Name: Value' (repeatable)"
    ),
    local_storage: list[str] | None = typer.Option(
        None, "--local-storage", help="localStorage entry 'key=value' (repeatable)"
    ),
    threads: int | None = typer.Option(
        None, "--threads", help="Targets collected concurrently (default: 1)", min=1, max=50
    ),
    filter_domain: list[str] | None = typer.Option(
        None, "--filter-domain", help="Keep only hosts matching this glob (repeatable)"
    ),
    exclude_domain: list[str] | None = typer.Option(
        None, "--exclude-domain", help="Drop hosts matching this glob (repeatable)"
    ),
    fetch_all: bool | None = typer.Option(
        None, "--fetch-all", help="Download every discovered file"
    ),
    fetch_one: str | None = typer.Option(None, "--fetch-one", help="Download a single URL"),
    download_dir: str | None = typer.Option(
        None, "--download-dir", "-d", help="Download directory (default: ./js-downloads)"
    ),
    dedupe: bool | None = typer.Option(
        None, "--dedupe", help="Skip downloads with identical content"
    ),
    config_path: Path | None = typer.Option(
        None,
        "--config",
        help="YAML config file (command line options override it)",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Collect JavaScript URLs from one or more pages.

    Each page is loaded in a real browser; scripts are gathered from network
    traffic, DOM changes, dynamic script creation, inline module imports,
    WebSocket frames and service workers.
    """
    setup_logging(verbose=verbose, console=console)

    try:
        base = load_config(config_path) if config_path else GetJSConfig()
        targets = collect_targets(url, url_list)

        session_overrides: dict[str, Any] = {"cookies": cookies}
        if header:
            session_overrides["headers"] = {**base.session.headers, **parse_headers(header)}
        if local_storage:
            session_overrides["local_storage"] = {
                **base.session.local_storage,
                **parse_local_storage(local_storage),
            }

        getjs_config = build_config(
            base,
            {
                "root": {"threads": threads},
                "browser": {"headless": headless, "proxy": proxy, "user_agent": user_agent},
                "collector": {
                    "timeout_ms": int(timeout * 1000) if timeout is not None else None,
                    "wait_ms": int(wait * 1000) if wait is not None else None,
                    "scrolling": False if no_scroll else None,
                },
                "session": session_overrides,
                "filters": {
                    "allow_domains": filter_domain or None,
                    "deny_domains": exclude_domain or None,
                },
                "output": {
                    "output_file": output,
                    "output_dir": output_dir,
                    "json_file": json_file,
                    "resume": resume,
                },
                "download": {
                    "fetch_all": fetch_all,
                    "fetch_one": fetch_one,
                    "directory": download_dir,
                    "dedupe": dedupe,
                },
            },
        )

        session = SessionCredentials.resolve(
            getjs_config.session.cookies,
            getjs_config.session.headers,
            getjs_config.session.local_storage,
            single_target=len(targets) == 1,
        )

        from getjs.runner import run_getjs

        summary = asyncio.run(run_getjs(getjs_config, targets, session=session, console=console))

        if summary and summary.get("targets_failed"):
            console.print(
                f"[yellow]Completed with {summary['targets_failed']} failed target(s)[/yellow]"
            )

    except ConfigError as e:
        console.print(f"[red]Input error:[/red] {e}")
        raise typer.Exit(code=1) from None

    except GetJSError as e:
        console.print(f"[red]Collection failed:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None

    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        else:
            console.print("[dim]Use --verbose to see full traceback[/dim]")
        raise typer.Exit(code=1) from None


async def _download_single(
    config: DownloadConfig, url: str, output: Path | None, headers: dict[str, str]
) -> Path:
    from getjs.assets import JSDownloader

    downloader = JSDownloader(config, headers=headers)
    asset = await downloader.download_one(url, output)
    return asset.path


@app.command()
def download(
    url: str = typer.Option(..., "--url", "-u", help="JavaScript URL to download"),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Output file (default: derived from the URL)"
    ),
    download_dir: str = typer.Option(
        "./js-downloads", "--download-dir", "-d", help="Download directory"
    ),
    header: list[str] | None = typer.Option(
        None, "--header", "-H", help="Extra header 'Name: Value' (repeatable)"
    ),
    timeout: float = typer.Option(30, "--timeout", "-t", help="Timeout in seconds", min=1),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Download a single JavaScript file directly (no browser)."""
    setup_logging(verbose=verbose, console=console)

    try:
        target = validate_target(url)
        try:
            download_config = DownloadConfig(directory=download_dir, timeout_ms=int(timeout * 1000))
        except ValidationError as e:
            raise ConfigError(f"Invalid options:\n{e}") from e

        path = asyncio.run(
            _download_single(download_config, target, output, parse_headers(header or []))
        )
        console.print(f"[green]Saved[/green] {path}", highlight=False)

    except ConfigError as e:
        console.print(f"[red]Input error:[/red] {e}")
        raise typer.Exit(code=1) from None

    except DownloadError as e:
        console.print(f"[red]Download failed:[/red] {e}")
        raise typer.Exit(code=1) from None

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        raise typer.Exit(code=130) from None


@app.command()
def validate(
    config_path: Path = typer.Argument(
        ...,
        help="Path to YAML config file to validate",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate a getjs configuration file.

    Checks YAML syntax and validates all configuration fields against
    the schema. Displays detailed error messages if validation fails.
    """
    try:
        console.print(f"[cyan]Validating configuration:[/cyan] {config_path}")

        getjs_config = load_config(config_path)

        console.print("[green][OK] Configuration is valid![/green]\n")

        table = Table(title="Configuration Summary")
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="white")

        table.add_row("Threads", str(getjs_config.threads))
        table.add_row("Headless", "Yes" if getjs_config.browser.headless else "No")
        table.add_row("Proxy", getjs_config.browser.proxy or "[dim]none[/dim]")
        table.add_row("Timeout", f"{getjs_config.collector.timeout_ms / 1000:g}s")
        table.add_row("Final wait", f"{getjs_config.collector.wait_ms / 1000:g}s")
        table.add_row("Scrolling", "Yes" if getjs_config.collector.scrolling else "No")
        table.add_row("Allow domains", ", ".join(getjs_config.filters.allow_domains) or "any")
        table.add_row("Deny domains", ", ".join(getjs_config.filters.deny_domains) or "none")
        table.add_row("Output file", getjs_config.output.output_file or "[dim]stdout[/dim]")
        table.add_row("Output directory", getjs_config.output.output_dir or "[dim]none[/dim]")
        table.add_row("Resume", "Yes" if getjs_config.output.resume else "No")
        table.add_row("Download", "Yes" if getjs_config.download.fetch_all else "No")

        console.print(table)

    except ConfigError as e:
        console.print("[red][FAIL] Configuration validation failed:[/red]\n")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None
