"""StreamKeeper - self-healing live HLS playback controller."""

from streamkeeper.__about__ import __version__

__all__ = ["__version__"]
