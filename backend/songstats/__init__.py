"""Playlist song stats kept fresh by a background yt-dlp sync job."""

__version__ = "1.0.0"
