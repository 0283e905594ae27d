"""aware: keep a program running and capture what it prints."""

from .version import __version__  # noqa: F401
