"""
admixer backend.

Versioned voice/music/sfx streams for audio ads, compiled into a single
render-ready mixer timeline.
"""

__version__ = "0.1.0"
