"""getjs - JavaScript asset discovery through a real browser."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("getjs")
except PackageNotFoundError:
    __version__ = "dev"
