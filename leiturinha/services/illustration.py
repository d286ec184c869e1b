"""
Illustration Orchestrator

Generates chapter illustrations on demand, one chapter or a whole story.

Outcomes per chapter:
- success: provider image stored on the chapter
- success_with_backup: provider failed, a backup image is shown instead
- failure: provider failed and no backup image is configured

Concurrency is bounded by the ProviderConcurrencyLimiter; failures are
never retried automatically (regenerating is an explicit user action).
Concurrent requests for the same chapter and prompt share one provider call.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from leiturinha.config.settings import DEFAULT_BACKUP_IMAGES
from leiturinha.models.models import (
    BulkIllustrationResult,
    IllustrationOptions,
    IllustrationResult,
    ImageGenerationParams,
    Story,
)
from leiturinha.services.errors import ChapterNotFoundError
from leiturinha.services.events import EventEmitter, story_events
from leiturinha.services.gateway import AIProviderGateway
from leiturinha.services.logger import get_logger
from leiturinha.services.rate_limiter import ProviderConcurrencyLimiter, get_concurrency_limiter
from leiturinha.services.storage import StorageService

logger = logging.getLogger(__name__)

UNEXPECTED_ILLUSTRATION_ERROR = "Não foi possível gerar a ilustração deste capítulo. Por favor, tente novamente."

# (keywords, image) checked in order; first match wins
BACKUP_KEYWORD_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("floresta", "selva"), DEFAULT_BACKUP_IMAGES[2]),
    (("aventura",), DEFAULT_BACKUP_IMAGES[3]),
    (("animal", "leão", "tucano", "macaco"), DEFAULT_BACKUP_IMAGES[4]),
    (("personagem", "character"), DEFAULT_BACKUP_IMAGES[1]),
]


class BackupImagePool:
    """
    Fallback illustrations shown when the image provider fails.

    The first image is the default; keyword rules only apply to images
    that are part of the pool.
    """

    def __init__(self, images: Sequence[str],
                 keyword_rules: Optional[List[Tuple[Tuple[str, ...], str]]] = None):
        self.images = list(images)
        self.keyword_rules = BACKUP_KEYWORD_RULES if keyword_rules is None else keyword_rules

    @property
    def is_empty(self) -> bool:
        return not self.images

    def select(self, prompt: str) -> Optional[str]:
        """Pick a backup image for a prompt, or None when the pool is empty"""
        if self.is_empty:
            return None
        lowered = (prompt or "").lower()
        for keywords, image in self.keyword_rules:
            if image in self.images and any(keyword in lowered for keyword in keywords):
                return image
        return self.images[0]


class IllustrationOrchestrator:
    def __init__(
        self,
        gateway: AIProviderGateway,
        storage: StorageService,
        backup_pool: BackupImagePool,
        limiter: Optional[ProviderConcurrencyLimiter] = None,
        events: Optional[EventEmitter] = None,
    ):
        self.gateway = gateway
        self.storage = storage
        self.backup_pool = backup_pool
        self.limiter = limiter or get_concurrency_limiter()
        self.events = events or story_events
        self._in_flight: Dict[tuple, asyncio.Future] = {}

    async def _character_names(self, story: Story) -> List[str]:
        names = []
        for character_id in story.character_ids:
            character = await self.storage.get_character(character_id)
            if character is not None:
                names.append(character.name)
        return names

    async def _persist(self, story: Story, chapter_index: int, image_url: str, is_backup: bool):
        """Best effort: the client already has the image even if storage fails"""
        try:
            await self.storage.update_chapter_image(story.id, chapter_index, image_url, is_backup)
        except Exception as e:
            logger.error(
                f"Failed to persist image for story {story.id} chapter {chapter_index}: {e}",
                exc_info=True,
            )

    async def _illustrate(self, story: Story, chapter_index: int,
                          options: IllustrationOptions, prompt: str) -> IllustrationResult:
        params = ImageGenerationParams(
            prompt=prompt,
            character_names=await self._character_names(story),
            style=options.style,
            mood=options.mood,
            age_group=options.age_group or story.age_group,
            story_id=story.id,
            chapter_index=chapter_index,
        )

        provider = self.gateway.router.get_image_config()["provider"]
        async with self.limiter.acquire(provider):
            result = await self.gateway.generate_chapter_image(params)
        await self.limiter.record_result(provider, result)

        if result.ok:
            image_url, is_backup = result.data.image_url, False
        else:
            image_url = self.backup_pool.select(prompt)
            if image_url is None:
                get_logger().illustration_failed(story.id, chapter_index, result.outcome.value)
                return IllustrationResult(
                    chapter_index=chapter_index,
                    success=False,
                    error=result.error.user_message,
                )
            is_backup = True

        await self._persist(story, chapter_index, image_url, is_backup)
        get_logger().illustration_completed(story.id, chapter_index, is_backup)
        await self.events.emit_chapter_image_ready(story.id, chapter_index, image_url, is_backup)
        return IllustrationResult(
            chapter_index=chapter_index,
            success=True,
            image_url=image_url,
            is_backup=is_backup,
        )

    async def generate_chapter_image(
        self,
        story: Story,
        chapter_index: int,
        options: Optional[IllustrationOptions] = None,
        image_prompt: Optional[str] = None,
    ) -> IllustrationResult:
        """
        Illustrate one chapter; always calls the provider (regenerate).

        Args:
            story: Stored story; its chapter is updated in place on success
            chapter_index: 0-based chapter position
            options: Style, mood and age group (defaults: cartoon, adventure, story's age)
            image_prompt: Explicit prompt instead of the chapter's stored one

        Any other error (storage, provider client) becomes a failure result.

        Raises:
            ChapterNotFoundError: If chapter_index is out of range
        """
        if chapter_index < 0 or chapter_index >= len(story.chapters):
            raise ChapterNotFoundError(chapter_index)

        options = options or IllustrationOptions()
        prompt = image_prompt or story.chapters[chapter_index].image_prompt
        key = (story.id, chapter_index, prompt, options.style, options.mood, options.age_group)

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._illustrate(story, chapter_index, options, prompt))
            self._in_flight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.info(f"Joining in-flight illustration for story {story.id} chapter {chapter_index}")

        try:
            # shield: one caller going away must not cancel the shared call
            result = await asyncio.shield(task)
        except Exception as e:
            logger.error(
                f"Unexpected error illustrating story {story.id} chapter {chapter_index}: {e}",
                exc_info=True,
            )
            get_logger().illustration_failed(story.id, chapter_index, type(e).__name__)
            return IllustrationResult(
                chapter_index=chapter_index,
                success=False,
                error=UNEXPECTED_ILLUSTRATION_ERROR,
            )

        if result.success:
            chapter = story.chapters[chapter_index]
            chapter.image_url = result.image_url
            chapter.image_is_backup = result.is_backup
        return result

    def _forget(self, key: tuple, task: asyncio.Future):
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    def in_flight_count(self) -> int:
        return len(self._in_flight)

    async def generate_all_illustrations(
        self,
        story: Story,
        options: Optional[IllustrationOptions] = None,
    ) -> BulkIllustrationResult:
        """
        Illustrate every chapter; one chapter's failure never affects another.

        Returns:
            One result per chapter, in chapter order, with outcome counts
        """
        start = time.time()

        results = await asyncio.gather(
            *(self.generate_chapter_image(story, i, options) for i in range(len(story.chapters)))
        )
        bulk = BulkIllustrationResult.from_results(story.id, list(results))

        get_logger().illustrations_summary(
            story.id, bulk.success_count, bulk.backup_count, bulk.failure_count, time.time() - start
        )
        await self.events.emit_illustrations_complete(
            story.id, bulk.success_count, bulk.backup_count, bulk.failure_count
        )
        return bulk
