"""
Chapter narration (paid plans)

Narrates one chapter with the speech provider and stores the audio on the
chapter as a data URL.
"""

import logging
from typing import Optional

from leiturinha.config.settings import Settings, get_settings
from leiturinha.models.models import Story
from leiturinha.models.profiles import Entitlement, SessionContext
from leiturinha.services.errors import ChapterNotFoundError, EntitlementError, ProviderError
from leiturinha.services.events import EventEmitter, story_events
from leiturinha.services.gateway import AIProviderGateway, audio_data_url
from leiturinha.services.storage import StorageService

logger = logging.getLogger(__name__)


class NarrationDisabledError(ProviderError):
    retryable = False
    user_message = "A narração está temporariamente desativada."


class NarrationService:
    def __init__(self, gateway: AIProviderGateway, storage: StorageService,
                 events: Optional[EventEmitter] = None, settings: Optional[Settings] = None):
        self.gateway = gateway
        self.storage = storage
        self.events = events or story_events
        self.settings = settings or get_settings()

    async def generate_chapter_audio(self, story: Story, chapter_index: int,
                                     session: SessionContext) -> str:
        """
        Narrate a chapter and return its audio URL.

        Raises:
            EntitlementError: Plan without narration
            ChapterNotFoundError: chapter_index out of range
            NarrationDisabledError: TTS switched off by configuration
            ProviderError: Speech provider failure
        """
        if not session.has_entitlement(Entitlement.NARRATION):
            raise EntitlementError(
                f"Plan {session.tier.value} has no narration",
                "A narração está disponível nos planos Plus e Família.",
            )
        if chapter_index < 0 or chapter_index >= len(story.chapters):
            raise ChapterNotFoundError(chapter_index)
        if self.settings.disable_tts:
            raise NarrationDisabledError("TTS is disabled by configuration")

        chapter = story.chapters[chapter_index]
        result = await self.gateway.generate_audio(f"{chapter.title}. {chapter.content}")
        audio_url = audio_data_url(result.unwrap())

        await self.storage.update_chapter_audio(story.id, chapter_index, audio_url)
        chapter.audio_url = audio_url
        logger.info(f"🔊 Narrated story {story.id} chapter {chapter_index}")
        await self.events.emit_chapter_audio_ready(story.id, chapter_index)
        return audio_url
