import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from ..core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Metadata only: never fetch the media payload
YTDLP_METADATA_ARGS = [
    "--dump-single-json",
    "--skip-download",
    "--no-playlist",
    "--no-check-certificates",
    "--no-warnings",
    "--prefer-free-formats",
    "--socket-timeout", "30",
]


class ExtractionError(Exception):
    """The extractor could not produce metadata for a media id."""

    def __init__(self, media_id: str, message: str):
        super().__init__(f"{media_id}: {message}")
        self.media_id = media_id


class MediaExtractor:
    """Runs the yt-dlp command line to read a video's metadata.

    Each call spawns one subprocess bounded by `timeout`; on timeout or
    cancellation the process is killed before returning.
    """

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        url_template: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or default_settings
        self.command: List[str] = list(command or settings.EXTRACTOR_ARGV or [sys.executable, "-m", "yt_dlp"])
        self.timeout = timeout or settings.EXTRACTOR_TIMEOUT_SECONDS
        self.url_template = url_template or settings.EXTRACTOR_URL_TEMPLATE

    def build_command(self, media_id: str) -> List[str]:
        return [*self.command, *YTDLP_METADATA_ARGS, self.url_template.format(media_id=media_id)]

    async def fetch_metadata(self, media_id: str) -> Dict[str, Any]:
        """Return the extractor's JSON metadata for `media_id`.

        Raises ExtractionError on spawn failure, timeout, non-zero exit or
        output that isn't a JSON object.
        """
        argv = self.build_command(media_id)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionError(media_id, f"could not start extractor: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionError(media_id, f"timed out after {self.timeout:g}s") from e
        finally:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[-500:]
            raise ExtractionError(media_id, f"extractor exited with {proc.returncode}: {detail}")

        try:
            info = json.loads(stdout)
        except ValueError as e:
            raise ExtractionError(media_id, f"malformed extractor output: {e}") from e
        if not isinstance(info, dict):
            raise ExtractionError(media_id, "extractor output is not a JSON object")

        logger.debug(f"Fetched metadata for {media_id}")
        return info

    @staticmethod
    def version() -> Optional[str]:
        try:
            from yt_dlp.version import __version__
            return __version__
        except ImportError:
            return None
