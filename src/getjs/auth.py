"""Session material for authenticated collection.

Cookies, extra headers and localStorage entries are parsed once, before any
browser work, and then applied to every per-target browser context.

Cookie input forms:
- JSON file with Playwright-native cookie objects (name, value, domain, ...)
- JSON file in the legacy browser-extension export format (Name, Value,
  Domain, ..., HttpOnly), detected by the presence of an "HttpOnly" key
- Raw "a=1; b=2" string, only when collecting a single target
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any

from getjs.exceptions import ConfigError
from getjs.rules import URLNormalizer

logger = logging.getLogger(__name__)

SAME_SITE_VALUES = {"strict": "Strict", "lax": "Lax", "none": "None"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _parse_expires(value: Any) -> float:
    """Convert an expiry value to epoch seconds (-1 for session cookies)."""
    if value is None or value == "":
        return -1
    if isinstance(value, bool):
        return -1
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    try:
        return float(text)
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
    except ValueError:
        pass

    try:
        return parsedate_to_datetime(text).timestamp()
    except (TypeError, ValueError):
        return -1


def normalize_cookie(raw: dict[str, Any]) -> dict[str, Any]:
    """Convert a cookie object into the shape Playwright's add_cookies() expects.

    Playwright-native objects pass through unchanged. Legacy objects are
    mapped field by field with string booleans converted, path defaulting
    to "/", unparseable expiry becoming a session cookie and sameSite
    defaulting to "Lax".
    """
    if "HttpOnly" not in raw:
        return raw

    same_site = str(raw.get("SameSite") or "Lax").strip().lower()

    cookie: dict[str, Any] = {
        "name": str(raw.get("Name", "")),
        "value": str(raw.get("Value", "")),
        "domain": str(raw.get("Domain", "")),
        "path": raw.get("Path") or "/",
        "expires": _parse_expires(raw.get("Expires")),
        "httpOnly": _as_bool(raw.get("HttpOnly")),
        "secure": _as_bool(raw.get("Secure")),
        "sameSite": SAME_SITE_VALUES.get(same_site, "Lax"),
    }
    return cookie


def load_cookie_file(path: Path) -> list[dict[str, Any]]:
    """Load cookies from a JSON file.

    A malformed file is reported and ignored so the run continues without
    cookies; a missing file is an input error.

    Raises:
        ConfigError: If the file does not exist
    """
    if not path.is_file():
        raise ConfigError(f"Cookie file not found: {path}")

    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Could not parse cookie file {path}, continuing without cookies: {e}")
        return []

    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        logger.warning(f"Cookie file {path} must contain a JSON array, continuing without cookies")
        return []

    cookies = [normalize_cookie(item) for item in data if isinstance(item, dict)]
    logger.debug(f"Loaded {len(cookies)} cookies from {path}")
    return cookies


def parse_cookie_string(raw: str, target: str) -> list[dict[str, Any]]:
    """Parse a raw "a=1; b=2" cookie header scoped to the target's hostname."""
    hostname = URLNormalizer.hostname(target)
    if hostname is None:
        raise ConfigError(f"Cannot scope cookies to target without a hostname: {target}")

    cookies: list[dict[str, Any]] = []
    for part in raw.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name.strip():
            continue
        cookies.append(
            {"name": name.strip(), "value": value.strip(), "domain": hostname, "path": "/"}
        )
    return cookies


def parse_headers(entries: list[str]) -> dict[str, str]:
    """Parse "Name: Value" strings, ignoring entries without a usable colon."""
    headers: dict[str, str] = {}
    for entry in entries:
        index = entry.find(":")
        if index <= 0:
            logger.debug(f"Ignoring malformed header: {entry!r}")
            continue
        headers[entry[:index].strip()] = entry[index + 1 :].strip()
    return headers


def parse_local_storage(entries: list[str]) -> dict[str, str]:
    """Parse "key=value" strings, splitting at the first "="."""
    items: dict[str, str] = {}
    for entry in entries:
        index = entry.find("=")
        if index <= 0:
            logger.debug(f"Ignoring malformed localStorage entry: {entry!r}")
            continue
        items[entry[:index]] = entry[index + 1 :]
    return items


@dataclass
class SessionCredentials:
    """Resolved authentication material shared by all browser contexts."""

    cookies: list[dict[str, Any]] = field(default_factory=list)
    raw_cookie: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    local_storage: dict[str, str] = field(default_factory=dict)

    @classmethod
    def resolve(
        cls,
        cookies: str | None,
        headers: dict[str, str],
        local_storage: dict[str, str],
        *,
        single_target: bool,
    ) -> "SessionCredentials":
        """Build credentials from configuration values.

        A cookie value naming an existing file is loaded as JSON. Anything
        else is a raw cookie string, which is only accepted for a single
        target since its domain comes from that target.

        Raises:
            ConfigError: For a raw cookie string in multi-target mode
        """
        session = cls(headers=dict(headers), local_storage=dict(local_storage))
        if not cookies:
            return session

        cookie_path = Path(cookies).expanduser()
        if cookie_path.is_file():
            session.cookies = load_cookie_file(cookie_path)
        elif cookies.strip().endswith(".json"):
            raise ConfigError(f"Cookie file not found: {cookie_path}")
        elif not single_target:
            raise ConfigError(
                "Raw cookie strings are only supported with a single target; "
                "use a JSON cookie file for multiple targets"
            )
        else:
            session.raw_cookie = cookies
        return session

    def cookies_for(self, target: str) -> list[dict[str, Any]]:
        """Cookies to install in the context collecting the given target."""
        if self.raw_cookie:
            return parse_cookie_string(self.raw_cookie, target)
        return list(self.cookies)

    @property
    def has_local_storage(self) -> bool:
        return bool(self.local_storage)
