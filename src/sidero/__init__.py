"""Sidero — MCP bridge exposing the Semgrep engine to agents over stdio."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sidero")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = ["__version__"]
