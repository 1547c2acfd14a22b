"""Aether: objective-driven desktop agent with a voice/text conversation session."""

from aether.version import CURRENT_VERSION as __version__

__all__ = ["__version__"]
