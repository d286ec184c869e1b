"""
Configuration management for Leiturinha

Loads environment variables and provides application settings.
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache


DEFAULT_BACKUP_IMAGES = [
    "https://cdn.pixabay.com/photo/2016/04/15/20/28/cartoon-1332054_960_720.png",
    "https://cdn.pixabay.com/photo/2019/05/26/14/40/cartoon-4230855_960_720.png",
    "https://cdn.pixabay.com/photo/2017/08/10/02/05/tiles-sprites-2617112_960_720.png",
    "https://cdn.pixabay.com/photo/2019/03/17/12/04/cartoon-4060188_960_720.png",
    "https://cdn.pixabay.com/photo/2023/04/17/21/11/animals-7934300_960_720.png",
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    app_name: str = "Leiturinha"
    port: int = 3000
    log_level: str = "INFO"

    # CORS Configuration
    # Default "*" allows all origins. For production set a comma-separated list:
    #   CORS_ALLOWED_ORIGINS=https://leiturinha.com.br,https://app.leiturinha.com.br
    cors_allowed_origins: str = "*"

    # OpenAI (text, images and narration)
    openai_api_key: Optional[str] = None

    # Claude (Anthropic) - text fallback for paid tiers
    claude_api_key: Optional[str] = None

    # Provider calls fail with a connectivity error after this many seconds
    provider_timeout_seconds: float = 60.0

    # =========================================================================
    # Illustration Pipeline
    # =========================================================================
    illustration_max_concurrent: int = 2  # Chapters illustrated in parallel
    illustration_min_concurrent: int = 1
    illustration_default_style: str = "cartoon"
    illustration_default_mood: str = "adventure"

    # Shown instead of a broken image when the image provider fails.
    # An empty list means no backup is available and failures surface as-is.
    backup_images: List[str] = DEFAULT_BACKUP_IMAGES

    # =========================================================================
    # SQL Database Configuration
    # Set USE_SQL_DATABASE=true to persist in SQL Server instead of memory
    # =========================================================================
    use_sql_database: bool = False
    sql_server: Optional[str] = None  # e.g., leiturinha-db.database.windows.net
    sql_database: Optional[str] = None
    sql_username: Optional[str] = None
    sql_password: Optional[str] = None
    sql_driver: str = "ODBC Driver 18 for SQL Server"

    # Development Mode - disables TTS to save costs
    disable_tts: bool = False

    # Debug Configuration
    debug_storage: bool = False    # Log storage operations
    debug_api_calls: bool = False  # Log provider API call details
    debug_log_dir: str = "logs/debug"

    @field_validator("illustration_default_style")
    @classmethod
    def known_style(cls, value: str):
        # models imports config.limits, so the enums load lazily
        from leiturinha.models.models import IllustrationStyle
        return IllustrationStyle(value)

    @field_validator("illustration_default_mood")
    @classmethod
    def known_mood(cls, value: str):
        from leiturinha.models.models import IllustrationMood
        return IllustrationMood(value)

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only load settings once.
    """
    return Settings()
