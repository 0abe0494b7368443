"""video-research: Topic-driven video discovery and transcript acquisition."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("video-research")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
