"""Tests for hostname allow/deny filtering."""

import pytest

from getjs.rules import DomainFilter

URLS = [
    "https://app.example.com/main.js",
    "https://cdn.example.com/vendor.js",
    "https://other.org/lib.js",
]


def test_allow_with_deny_override() -> None:
    domain_filter = DomainFilter(allow=["*.example.com"], deny=["cdn.example.com"])

    assert domain_filter.apply(URLS) == ["https://app.example.com/main.js"]


def test_no_patterns_is_identity() -> None:
    domain_filter = DomainFilter()

    assert domain_filter.is_identity
    assert domain_filter.apply(URLS) == URLS


def test_deny_only() -> None:
    domain_filter = DomainFilter(deny=["*.org"])

    assert domain_filter.apply(URLS) == URLS[:2]


def test_order_preserved() -> None:
    domain_filter = DomainFilter(allow=["*"])

    assert domain_filter.apply(list(reversed(URLS))) == list(reversed(URLS))


@pytest.mark.parametrize(
    "pattern,host,expected",
    [
        ("*.example.com", "app.example.com", True),
        ("*.example.com", "a.b.example.com", True),
        ("*.example.com", "example.com", False),
        ("example.com", "EXAMPLE.COM", True),
        ("EXAMPLE.com", "example.com", True),
        # Dots are literal
        ("example.com", "exampleXcom", False),
        # Whole-host match only
        ("example.com", "notexample.com", False),
        ("example.com", "example.com.evil.net", False),
        ("cdn*", "cdn2.example.net", True),
    ],
)
def test_pattern_matching(pattern: str, host: str, expected: bool) -> None:
    domain_filter = DomainFilter(allow=[pattern])

    assert domain_filter.is_allowed(f"https://{host}/a.js") is expected


def test_hostless_url() -> None:
    assert DomainFilter(deny=["*.example.com"]).is_allowed("/relative.js")
    assert not DomainFilter(allow=["*.example.com"]).is_allowed("/relative.js")


def test_regex_metacharacters_are_literal() -> None:
    domain_filter = DomainFilter(allow=["a+b.example.com"])

    assert not domain_filter.is_allowed("https://aab.example.com/x.js")
