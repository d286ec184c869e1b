"""
Story Assembly Service

Turns a validated wizard selection into a stored Story:

1. Resolve characters and theme against the catalog (age group, premium)
2. Build one Portuguese prompt for the age tier
3. One gateway call
4. Parse the reply into title, summary, reading time and chapters
5. Persist and emit `story_created`

Provider failures surface as the typed errors in errors.py; nothing here
retries.
"""

import logging
import time
from typing import List, Optional

from leiturinha.models.models import Character, Story, StoryGenerationParams, Theme, WizardSelection
from leiturinha.models.profiles import Entitlement, SessionContext
from leiturinha.prompts.story import get_story_prompt, get_story_system_prompt
from leiturinha.services.chapters import parse_story_reply
from leiturinha.services.errors import EntitlementError, GenerationFormatError, SelectionError
from leiturinha.services.events import EventEmitter, story_events
from leiturinha.services.gateway import AIProviderGateway
from leiturinha.services.logger import get_logger
from leiturinha.services.storage import StorageService

logger = logging.getLogger(__name__)


class StoryAssemblyService:
    def __init__(self, gateway: AIProviderGateway, storage: StorageService,
                 events: Optional[EventEmitter] = None, temperature: float = 0.7):
        self.gateway = gateway
        self.storage = storage
        self.events = events or story_events
        self.temperature = temperature

    async def _resolve_characters(self, selection: WizardSelection, session: SessionContext) -> List[Character]:
        characters = []
        for character_id in selection.character_ids:
            character = await self.storage.get_character(character_id)
            if character is None:
                raise SelectionError(
                    f"Unknown character id {character_id}",
                    "Personagem não encontrado.",
                )
            if selection.age_group not in character.age_groups:
                raise SelectionError(
                    f"Character {character_id} is not available for age group {selection.age_group.value}",
                    f"{character.name} não está disponível para a faixa etária {selection.age_group.value}.",
                )
            if character.is_premium and not session.has_entitlement(Entitlement.PREMIUM_CONTENT):
                raise EntitlementError(
                    f"Character {character_id} requires premium_content",
                    f"{character.name} está disponível apenas nos planos pagos.",
                )
            characters.append(character)
        return characters

    async def _resolve_theme(self, selection: WizardSelection, session: SessionContext) -> Theme:
        theme = await self.storage.get_theme(selection.theme_id)
        if theme is None:
            raise SelectionError(f"Unknown theme id {selection.theme_id}", "Tema não encontrado.")
        if not theme.allows(selection.age_group):
            raise SelectionError(
                f"Theme {theme.id} does not include age group {selection.age_group.value}",
                f"O tema {theme.name} não está disponível para a faixa etária {selection.age_group.value}.",
            )
        if theme.is_premium and not session.has_entitlement(Entitlement.PREMIUM_CONTENT):
            raise EntitlementError(
                f"Theme {theme.id} requires premium_content",
                f"O tema {theme.name} está disponível apenas nos planos pagos.",
            )
        return theme

    async def _check_child_profile(self, selection: WizardSelection, session: SessionContext):
        if selection.child_profile_id is None:
            return
        profile = await self.storage.get_child_profile(selection.child_profile_id)
        if profile is None or (profile.parent_id != session.user_id and not session.is_admin):
            raise SelectionError(
                f"Child profile {selection.child_profile_id} does not belong to user {session.user_id}",
                "Perfil da criança não encontrado.",
            )

    async def validate(self, selection: WizardSelection, session: SessionContext):
        """
        Check a selection against the catalog and the session's plan.

        Raises:
            SelectionError: incomplete selection or unknown/incompatible records
            EntitlementError: premium content without the premium_content entitlement
        """
        if not selection.is_submittable:
            raise SelectionError(
                "Selection is incomplete",
                "Escolha a faixa etária, pelo menos um personagem e um tema.",
            )
        characters = await self._resolve_characters(selection, session)
        theme = await self._resolve_theme(selection, session)
        await self._check_child_profile(selection, session)
        return characters, theme

    async def assemble(self, selection: WizardSelection, session: SessionContext) -> Story:
        """
        Generate, parse and store one story.

        Raises:
            SelectionError / EntitlementError: before any provider call
            ProviderAuthError, ProviderRateLimitError, ProviderConnectivityError:
                from the gateway
            GenerationFormatError: reply without title/content or with broken JSON
        """
        characters, theme = await self.validate(selection, session)

        child_name = selection.child_name
        if child_name and not session.has_entitlement(Entitlement.PERSONALIZATION):
            logger.info(f"Dropping child name for user {session.user_id}: plan {session.tier.value} has no personalization")
            child_name = None

        character_names = [c.name for c in characters]
        get_logger().story_requested(session.user_id, selection.age_group.value,
                                     len(characters), selection.text_only)
        start = time.time()

        params = StoryGenerationParams(
            prompt=get_story_prompt(selection.age_group, theme.name, character_names, child_name),
            system_message=get_story_system_prompt(),
            temperature=self.temperature,
            tier=session.tier.value,
        )
        result = await self.gateway.generate_story(params)
        if not result.ok:
            get_logger().story_failed(session.user_id, f"{result.outcome.value}: {result.error}")
        generated = result.unwrap()

        try:
            parsed = parse_story_reply(generated.content, theme.name)
        except GenerationFormatError as e:
            e.provider = generated.provider
            get_logger().story_failed(session.user_id, f"format_error: {e}")
            raise

        story = Story(
            user_id=session.user_id,
            child_profile_id=selection.child_profile_id,
            title=parsed.title,
            content=parsed.content,
            summary=parsed.summary,
            reading_time=parsed.reading_time,
            age_group=selection.age_group,
            character_ids=list(selection.character_ids),
            theme_id=theme.id,
            text_only=selection.text_only,
            chapters=parsed.chapters,
        )
        story = await self.storage.create_story(story)

        get_logger().story_created(story.id, story.title, len(story.chapters), time.time() - start)
        await self.events.emit_story_created(story.id, session.user_id, story.title, len(story.chapters))
        return story
