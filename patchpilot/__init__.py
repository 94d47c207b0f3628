"""patchpilot: task description in, reviewed branch out."""

from patchpilot.identity import __version__

__all__ = ["__version__"]
