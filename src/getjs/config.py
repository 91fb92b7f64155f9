"""Configuration system.

YAML configuration files validated by Pydantic models. Every CLI flag has a
counterpart here so a run can be described entirely in a file, with flags
overriding individual values. Entry point: load_config().
"""

from pathlib import Path
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from getjs.exceptions import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


class BrowserConfig(BaseModel):
    """Shared Chromium browser and per-target context settings."""

    headless: bool = Field(default=True, description="Run Chromium without a window")
    proxy: str | None = Field(
        default=None,
        description="Proxy server passed to the browser (e.g., 'http://127.0.0.1:8080')",
    )
    user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent for every browser context",
    )
    viewport_width: int = Field(default=1920, ge=320, le=7680)
    viewport_height: int = Field(default=1080, ge=240, le=4320)
    ignore_https_errors: bool = Field(
        default=True,
        description="Accept invalid TLS certificates (targets are often staging hosts)",
    )

    @field_validator("proxy")
    @classmethod
    def validate_proxy(cls, v: str | None) -> str | None:
        """Require a scheme and host on proxy URLs."""
        if v is None:
            return v
        parsed = urlparse(v)
        if not parsed.scheme or not parsed.hostname:
            raise ValueError(f"Proxy must look like scheme://host:port, got '{v}'")
        return v


class CollectorConfig(BaseModel):
    """Timing and behaviour of the per-target signal collector.

    All delays are in milliseconds. The settle delays give lazy loaders a
    chance to fire after each phase before the next one starts.
    """

    timeout_ms: int = Field(
        default=30000,
        ge=1000,
        le=300000,
        description="Navigation and default page operation timeout",
    )
    wait_ms: int = Field(
        default=5000,
        ge=0,
        le=300000,
        description="Final wait after all phases for late requests",
    )
    scrolling: bool = Field(default=True, description="Scroll the page to trigger lazy loading")
    interactions: bool = Field(default=True, description="Hover interactive elements")
    initial_settle_ms: int = Field(default=2000, ge=0)
    scroll_step_delay_ms: int = Field(default=200, ge=0)
    post_scroll_settle_ms: int = Field(default=1000, ge=0)
    interaction_settle_ms: int = Field(default=1000, ge=0)
    service_worker_settle_ms: int = Field(default=1000, ge=0)
    hover_timeout_ms: int = Field(default=500, ge=50)
    hover_pause_ms: int = Field(default=100, ge=0)
    max_hovers_per_selector: int = Field(default=10, ge=0, le=1000)


class SessionConfig(BaseModel):
    """Authentication material applied to every browser context."""

    cookies: str | None = Field(
        default=None,
        description=(
            "Path to a JSON cookie file, or a raw 'name=value; name2=value2' string "
            "(raw strings are only accepted for a single target)"
        ),
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra HTTP headers sent with every request",
    )
    local_storage: dict[str, str] = Field(
        default_factory=dict,
        description="localStorage entries seeded before any page script runs",
    )


class FilterConfig(BaseModel):
    """Hostname glob filters applied to discovered URLs."""

    allow_domains: list[str] = Field(
        default_factory=list,
        description="Keep only URLs whose hostname matches one of these globs",
    )
    deny_domains: list[str] = Field(
        default_factory=list,
        description="Drop URLs whose hostname matches any of these globs (wins over allow)",
    )

    @field_validator("allow_domains", "deny_domains")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Strip patterns and reject empty ones."""
        cleaned = [p.strip() for p in v]
        if any(not p for p in cleaned):
            raise ValueError("Domain patterns cannot be empty")
        return cleaned


class OutputConfig(BaseModel):
    """Where discovered URLs are written."""

    output_file: str | None = Field(
        default=None,
        description="Combined (or single target) newline-delimited output file",
    )
    output_dir: str | None = Field(
        default=None,
        description="Directory for one '<host>_js.txt' file per target",
    )
    json_file: str | None = Field(
        default=None,
        description="JSON report mapping each target to its URLs",
    )
    resume: bool = Field(
        default=False,
        description="Append only URLs not already present in existing output files",
    )

    @property
    def has_file_destination(self) -> bool:
        """True when any output file is configured."""
        return bool(self.output_file or self.output_dir or self.json_file)


class DownloadConfig(BaseModel):
    """Downloading of discovered JavaScript files."""

    fetch_all: bool = Field(default=False, description="Download every discovered file")
    fetch_one: str | None = Field(default=None, description="Download a single URL")
    directory: str = Field(default="./js-downloads", description="Download directory")
    dedupe: bool = Field(
        default=False,
        description="Skip files whose SHA-256 matches an earlier download in the run",
    )
    timeout_ms: int = Field(default=30000, ge=1000, le=300000)
    max_redirects: int = Field(default=5, ge=0, le=20)
    max_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Retries for transient HTTP statuses on the httpx fallback path",
    )
    max_concurrent_downloads: int = Field(default=5, ge=1, le=100)
    use_browser_context: bool = Field(
        default=True,
        description="Fetch through the authenticated browser request context when available",
    )

    @field_validator("fetch_one")
    @classmethod
    def validate_fetch_one(cls, v: str | None) -> str | None:
        """Validate the single download URL."""
        if v is None:
            return v
        try:
            return validate_target(v)
        except ConfigError as e:
            raise ValueError(str(e)) from e


class GetJSConfig(BaseModel):
    """Root configuration for a getjs run."""

    threads: int = Field(
        default=1,
        ge=1,
        le=50,
        description="Number of targets processed concurrently in one batch",
    )
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    collector: CollectorConfig = Field(default_factory=CollectorConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)

    @model_validator(mode="after")
    def validate_output_config(self) -> "GetJSConfig":
        """Resume needs at least one line-delimited file to merge into."""
        if self.output.resume and not (self.output.output_file or self.output.output_dir):
            raise ValueError(
                "output.resume requires output.output_file or output.output_dir to be set"
            )
        return self


def validate_target(url: str) -> str:
    """Validate a target URL and return it stripped.

    Args:
        url: Candidate target URL

    Returns:
        The URL with surrounding whitespace removed

    Raises:
        ConfigError: If the URL is not an absolute http/https URL with a host
    """
    candidate = url.strip()
    try:
        parsed = urlparse(candidate)
    except ValueError as e:
        raise ConfigError(f"Invalid URL '{url}': {e}") from e

    if parsed.scheme.lower() not in ("http", "https") or not parsed.hostname:
        raise ConfigError(f"Invalid URL '{url}': must be an absolute http(s) URL")
    return candidate


def read_target_list(path: Path) -> list[str]:
    """Read and validate targets from a newline-delimited file.

    Blank lines and '#' comments are skipped.

    Raises:
        ConfigError: If the file is missing or contains an invalid URL
    """
    if not path.is_file():
        raise ConfigError(f"URL list file not found: {path}")

    with path.open("r", encoding="utf-8") as f:
        lines = [line.strip() for line in f]

    return [validate_target(line) for line in lines if line and not line.startswith("#")]


def load_config(path: Path) -> GetJSConfig:
    """Load and validate YAML configuration file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GetJSConfig instance

    Raises:
        ConfigError: If config file is not found, invalid YAML, or validation fails
    """
    try:
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        if not path.is_file():
            raise ConfigError(f"Configuration path is not a file: {path}")

        with path.open("r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            return GetJSConfig()

        if not isinstance(config_dict, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML object/dict, "
                f"got {type(config_dict).__name__}"
            )

        return GetJSConfig(**config_dict)
    except FileNotFoundError as e:
        raise ConfigError(f"Configuration file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed for {path}:\n{e}") from e
