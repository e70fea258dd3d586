from typing import List, Optional
from pathlib import Path
import shlex
from urllib.parse import quote
from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Try to load .env file if it exists
env_path = Path(__file__).parent.parent.parent.parent / '.env'
if env_path.exists():
    load_dotenv(str(env_path))


class Settings(BaseSettings):
    PROJECT_NAME: str = "SongStats"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server Settings
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./songstats.db"

    # Redis
    REDIS_URL: Optional[str] = None
    REDIS_HOST: Optional[str] = None
    REDIS_PORT: Optional[int] = None
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    # Stats cache
    CACHE_KEY_PREFIX: str = "ytstats:"
    CACHE_TTL_SECONDS: int = Field(60, gt=0)

    # Background synchronization
    SYNC_ENABLED: bool = True
    SYNC_INTERVAL_SECONDS: float = Field(60.0, gt=0)
    SYNC_STALE_AFTER_SECONDS: float = Field(600.0, ge=0)  # 10 minutes
    SYNC_COOLDOWN_SECONDS: float = Field(30.0, ge=0)

    # Extractor (yt-dlp) Settings
    EXTRACTOR_COMMAND: Optional[str] = None  # defaults to the installed yt_dlp module
    EXTRACTOR_URL_TEMPLATE: str = "https://www.youtube.com/watch?v={media_id}"
    EXTRACTOR_TIMEOUT_SECONDS: float = Field(60.0, gt=0)

    # Durable writes
    STORAGE_WRITE_ATTEMPTS: int = Field(3, ge=1)

    @property
    def EXTRACTOR_ARGV(self) -> Optional[List[str]]:
        if not self.EXTRACTOR_COMMAND:
            return None
        return shlex.split(self.EXTRACTOR_COMMAND)

    class Config:
        env_file = ".env"
        case_sensitive = True
        json_schema_extra = {
            "title": "SongStats Settings",
            "description": "Configuration settings for the song stats service"
        }

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        # Build Redis URL from its parts if only those were provided
        if not self.REDIS_URL and self.REDIS_HOST:
            auth = f":{quote(self.REDIS_PASSWORD, safe='')}@" if self.REDIS_PASSWORD else ""
            port = self.REDIS_PORT or 6379
            self.REDIS_URL = f"redis://{auth}{self.REDIS_HOST}:{port}/{self.REDIS_DB}"

# Create global settings object
settings = Settings()
