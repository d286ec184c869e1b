"""Configuration package for Leiturinha"""

from .settings import Settings, get_settings, DEFAULT_BACKUP_IMAGES
from .limits import (
    MAX_CHARACTERS_PER_STORY,
    CHILD_NAME_MAX_LENGTH,
    IMAGE_PROMPT_EXCERPT_LENGTH,
    IMAGE_PROMPT_MAX_LENGTH,
    TTS_MAX_CHARS,
)

__all__ = [
    "Settings",
    "get_settings",
    "DEFAULT_BACKUP_IMAGES",
    "MAX_CHARACTERS_PER_STORY",
    "CHILD_NAME_MAX_LENGTH",
    "IMAGE_PROMPT_EXCERPT_LENGTH",
    "IMAGE_PROMPT_MAX_LENGTH",
    "TTS_MAX_CHARS",
]
