"""Benchmark fixtures for deterministic, repeatable performance tests.

All fixtures generate data programmatically - no external dependencies.
"""

import pytest


@pytest.fixture
def raw_script_urls() -> list[str]:
    """1000 raw script references in the shapes discovery sources report them."""
    shapes = [
        "/static/js/main.{i}.js",
        "./chunks/{i}.chunk.js",
        "//CDN.Example.com//lib//vendor{i}.js#sourcemap",
        "https://example.com:443/assets/index.{i:08x}.js?v={i}",
        "https://api.example.com/data/{i}.json",
    ]
    return [shape.format(i=i) for i in range(200) for shape in shapes]


@pytest.fixture
def canonical_urls(raw_script_urls: list[str]) -> list[str]:
    """1000 canonical absolute URLs across a handful of hosts."""
    hosts = ["example.com", "cdn.example.com", "ads.example.com", "static.other.org"]
    return [
        f"https://{hosts[i % len(hosts)]}/js/file{i}.js" for i in range(len(raw_script_urls))
    ]


@pytest.fixture
def module_source() -> str:
    """Inline module text with 500 static and dynamic imports."""
    lines = []
    for i in range(250):
        lines.append(f'import {{ part{i} }} from "./parts/part{i}.js";')
        lines.append(f'const lazy{i} = () => import("./lazy/route{i}.js");')
    return "\n".join(lines)
