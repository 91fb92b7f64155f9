"""URL normalization, JavaScript classification and domain filtering.

Pure functions shared by every discovery source: URLNormalizer (canonical
absolute URLs), classify() (is this resource JavaScript?), the text scanners
used on inline modules, script bodies and WebSocket frames, and DomainFilter
(hostname allow/deny globs).
"""

import re
from collections.abc import Iterable
from urllib.parse import urljoin, urlparse, urlunparse


class URLNormalizer:
    """Canonicalization of discovered URLs.

    Two raw strings that point to the same script must normalize to the same
    string, since the canonical form is the identity used for deduplication.
    """

    SAFE_SCHEMES = {"http", "https"}

    DEFAULT_PORTS = {
        "http": 80,
        "https": 443,
    }

    _REPEATED_SLASHES = re.compile(r"/{2,}")

    @staticmethod
    def normalize(url: str, base_url: str | None = None) -> str | None:
        """Resolve a raw URL against a base and return its canonical form.

        Normalizations applied:
        - Protocol-relative URLs (//host/path) take the base URL's scheme
        - Relative URLs are resolved against base_url
        - Scheme and hostname are lowercased, default ports removed
        - Repeated slashes in the path collapse, an empty path becomes "/"
        - Fragments are removed, query strings kept

        Args:
            url: Raw URL as seen by a discovery source
            base_url: URL of the page the reference was found on

        Returns:
            Canonical absolute http(s) URL, or None for anything malformed,
            non-http(s) or hostless. Never raises.

        Examples:
            >>> URLNormalizer.normalize("//CDN.example.com//lib//a.js#x", "https://example.com/")
            'https://cdn.example.com/lib/a.js'

            >>> URLNormalizer.normalize("./lazy.js", "https://example.com/app/")
            'https://example.com/app/lazy.js'

            >>> URLNormalizer.normalize("javascript:void(0)", "https://example.com/") is None
            True
        """
        try:
            candidate = url.strip()
            if not candidate:
                return None

            if candidate.startswith("//"):
                base_scheme = urlparse(base_url).scheme if base_url else ""
                candidate = f"{base_scheme or 'https'}:{candidate}"
            elif base_url:
                candidate = urljoin(base_url, candidate)

            parsed = urlparse(candidate)
            scheme = parsed.scheme.lower()
            if scheme not in URLNormalizer.SAFE_SCHEMES or not parsed.hostname:
                return None

            host = parsed.hostname.lower()
            netloc = f"[{host}]" if ":" in host else host

            port = parsed.port
            if port is not None and port != URLNormalizer.DEFAULT_PORTS[scheme]:
                netloc = f"{netloc}:{port}"

            if parsed.username:
                auth = parsed.username
                if parsed.password:
                    auth = f"{auth}:{parsed.password}"
                netloc = f"{auth}@{netloc}"

            path = URLNormalizer._REPEATED_SLASHES.sub("/", parsed.path) or "/"

            return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ""))
        except (AttributeError, TypeError, ValueError):
            return None

    @staticmethod
    def hostname(url: str) -> str | None:
        """Lowercased hostname of a URL, or None if it has none."""
        try:
            host = urlparse(url).hostname
        except (TypeError, ValueError):
            return None
        return host.lower() if host else None


JS_CONTENT_TYPES = (
    "application/javascript",
    "application/x-javascript",
    "text/javascript",
    "application/ecmascript",
    "text/ecmascript",
    "module",
)

JS_EXTENSIONS = (".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx")

# Bundler output such as 2.chunk.js or webpack.runtime1.js
CHUNK_PATTERN = re.compile(r"\.(chunk|bundle|vendor|main|app|runtime)\d*\.js", re.IGNORECASE)
HASHED_PATTERN = re.compile(r"\.[a-f0-9]{8,}\.js", re.IGNORECASE)
JS_SEGMENT_PATTERN = re.compile(r"\.js(?:/|$)", re.IGNORECASE)


def classify(url: str, content_type: str | None = None) -> bool:
    """Decide whether a resource is JavaScript.

    Any one of these is sufficient:
    (a) a JavaScript content type
    (b) a JS/TS file extension on the path
    (c) bundler chunk naming
    (d) a content-hashed filename
    (e) a query string on a path with a segment ending in ".js"

    Args:
        url: Absolute or relative URL
        content_type: Response Content-Type header, if known

    Returns:
        True if the resource should be treated as JavaScript

    Examples:
        >>> classify("https://example.com/api/data", "text/javascript; charset=utf-8")
        True
        >>> classify("https://example.com/static/main.3f9a1c2b.js")
        True
        >>> classify("https://example.com/api.js-proxy?id=1")
        False
    """
    if content_type:
        lowered = content_type.lower()
        if any(js_type in lowered for js_type in JS_CONTENT_TYPES):
            return True

    try:
        parsed = urlparse(url)
    except (TypeError, ValueError):
        return False

    path = parsed.path.lower()

    if path.endswith(JS_EXTENSIONS):
        return True

    if CHUNK_PATTERN.search(path) or HASHED_PATTERN.search(path):
        return True

    return bool(parsed.query) and JS_SEGMENT_PATTERN.search(path) is not None


MODULE_IMPORT_PATTERNS = (
    re.compile(r"""import\s+(?:[\w{}\s,*]+\s+from\s+)?['"]([^'"]+)['"]"""),
    re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
)
SERVICE_WORKER_PATTERN = re.compile(r"""serviceWorker\.register\s*\(\s*['"]([^'"]+)['"]""")
JS_URL_PATTERN = re.compile(r"""https?://[^\s"'<>]+\.js[^\s"'<>]*""", re.IGNORECASE)


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def extract_module_specifiers(text: str) -> list[str]:
    """Find static and dynamic import specifiers in module source.

    Examples:
        >>> extract_module_specifiers('import x from "./a.js"; import("./b.js")')
        ['./a.js', './b.js']
    """
    found: list[str] = []
    for pattern in MODULE_IMPORT_PATTERNS:
        found.extend(match.group(1) for match in pattern.finditer(text))
    return _unique(found)


def extract_service_worker_registrations(text: str) -> list[str]:
    """Find literal script URLs passed to navigator.serviceWorker.register()."""
    return _unique(match.group(1) for match in SERVICE_WORKER_PATTERN.finditer(text))


def extract_js_urls(text: str) -> list[str]:
    """Find absolute http(s) URLs containing ".js" in free text."""
    return _unique(match.group(0) for match in JS_URL_PATTERN.finditer(text))


class DomainFilter:
    """Hostname allow/deny filtering with glob patterns.

    "*" matches any run of characters (including dots); everything else is
    literal. Patterns match the whole hostname, case-insensitively. Deny
    always wins over allow, and with an allow list present a URL must match
    at least one allow pattern.

    Example:
        >>> f = DomainFilter(allow=["*.example.com"], deny=["cdn.example.com"])
        >>> f.apply(["https://app.example.com/a.js", "https://cdn.example.com/b.js"])
        ['https://app.example.com/a.js']
    """

    def __init__(self, allow: Iterable[str] = (), deny: Iterable[str] = ()) -> None:
        self.allow_patterns = [self.compile_pattern(p) for p in allow]
        self.deny_patterns = [self.compile_pattern(p) for p in deny]

    @staticmethod
    def compile_pattern(pattern: str) -> re.Pattern[str]:
        """Translate a hostname glob into a compiled regex."""
        escaped = re.escape(pattern.strip().lower()).replace(r"\*", ".*")
        return re.compile(escaped, re.IGNORECASE)

    @property
    def is_identity(self) -> bool:
        """True when no patterns are configured."""
        return not self.allow_patterns and not self.deny_patterns

    def is_allowed(self, url: str) -> bool:
        """Check a single URL against the deny and allow lists."""
        host = URLNormalizer.hostname(url)
        if host is None:
            return not self.allow_patterns

        if any(p.fullmatch(host) for p in self.deny_patterns):
            return False

        if self.allow_patterns:
            return any(p.fullmatch(host) for p in self.allow_patterns)

        return True

    def apply(self, urls: Iterable[str]) -> list[str]:
        """Filter URLs, preserving order. Identity when no patterns are set."""
        if self.is_identity:
            return list(urls)
        return [url for url in urls if self.is_allowed(url)]
