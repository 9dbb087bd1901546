"""Tool-calling chat assistant core."""

from .version import __version__, get_version

__all__ = ["__version__", "get_version"]
