"""
Playlist module - browsing, searching, and playing uploaded clips.
"""

from .store import PlaylistStore

__all__ = ["PlaylistStore"]
