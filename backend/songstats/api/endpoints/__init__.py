"""
API endpoints package initialization
"""
from . import health, playlists, songs, sync

__all__ = ['health', 'playlists', 'songs', 'sync']
