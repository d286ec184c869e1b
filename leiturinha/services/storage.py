"""
Storage layer for Leiturinha.

StorageService is the persistence contract used by every service.
InMemoryStorage is the default backend (seeded catalog, lost on restart);
DatabaseService in database.py implements the same contract on SQL Server.

Stored models are copied on the way in and out, so callers can never
mutate persisted state by holding a reference.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from leiturinha.models.models import (
    AgeGroup,
    Character,
    ReadingSession,
    Story,
    Theme,
)
from leiturinha.models.profiles import ChildProfile, PlanTier, SubscriptionPlan
from leiturinha.services.errors import ChapterNotFoundError, StoryNotFoundError
from leiturinha.services.logger import get_logger


class StorageService(ABC):
    """Persistence contract for stories, reading sessions and the catalog."""

    # ===== Stories =====

    @abstractmethod
    async def create_story(self, story: Story) -> Story:
        """Store a new story and return it with its id assigned."""

    @abstractmethod
    async def get_story(self, story_id: int) -> Optional[Story]:
        ...

    @abstractmethod
    async def list_stories(self, user_id: int) -> List[Story]:
        ...

    @abstractmethod
    async def update_chapter_image(self, story_id: int, chapter_index: int,
                                   image_url: str, is_backup: bool = False) -> None:
        ...

    @abstractmethod
    async def update_chapter_audio(self, story_id: int, chapter_index: int, audio_url: str) -> None:
        ...

    # ===== Reading sessions =====

    @abstractmethod
    async def find_reading_session(self, child_id: int, story_id: int) -> Optional[ReadingSession]:
        ...

    @abstractmethod
    async def get_reading_session(self, session_id: int) -> Optional[ReadingSession]:
        ...

    @abstractmethod
    async def upsert_reading_session(self, session: ReadingSession) -> ReadingSession:
        """Insert or replace the session for (child_id, story_id); never duplicates."""

    @abstractmethod
    async def list_reading_sessions(self, child_id: int) -> List[ReadingSession]:
        ...

    # ===== Child profiles =====

    @abstractmethod
    async def create_child_profile(self, profile: ChildProfile) -> ChildProfile:
        ...

    @abstractmethod
    async def get_child_profile(self, child_id: int) -> Optional[ChildProfile]:
        ...

    @abstractmethod
    async def list_child_profiles(self, parent_id: int) -> List[ChildProfile]:
        ...

    # ===== Catalog =====

    @abstractmethod
    async def get_characters(self) -> List[Character]:
        ...

    @abstractmethod
    async def get_character(self, character_id: int) -> Optional[Character]:
        ...

    @abstractmethod
    async def get_themes(self, age_group: Optional[AgeGroup] = None) -> List[Theme]:
        ...

    @abstractmethod
    async def get_theme(self, theme_id: int) -> Optional[Theme]:
        ...

    @abstractmethod
    async def get_subscription_plans(self) -> List[SubscriptionPlan]:
        ...


# =========================================================================
# Seed catalog
# =========================================================================

SEED_CHARACTERS = [
    Character(id=1, name="Léo, o Leão", description="Um leão explorador e corajoso",
              personality="Corajoso, aventureiro e líder",
              image_url="https://cdn3.iconfinder.com/data/icons/animal-flat-colors/64/lion-512.png"),
    Character(id=2, name="Bia, a Borboleta", description="Uma borboleta curiosa e gentil",
              personality="Curiosa, gentil e artística",
              image_url="https://cdn3.iconfinder.com/data/icons/spring-2-1/30/Butterfly-512.png"),
    Character(id=3, name="Pedro, o Polvo", description="Um polvo inteligente e criativo",
              personality="Inteligente, criativo e prestativo",
              image_url="https://cdn3.iconfinder.com/data/icons/ocean-life/500/Octopus-512.png"),
    Character(id=4, name="Luna, a Loba", description="Uma loba protetora e sábia",
              personality="Protetora, sábia e leal",
              image_url="https://cdn3.iconfinder.com/data/icons/animal-flat-colors/64/wolf-512.png"),
    Character(id=5, name="Teo, o Tucano", description="Um tucano músico e divertido",
              personality="Músico, divertido e comunicativo",
              image_url="https://cdn3.iconfinder.com/data/icons/bird-set-ii-1/512/toucan-512.png"),
    Character(id=6, name="Nina, a Naja", description="Uma naja sábia e misteriosa",
              personality="Sábia, misteriosa e calma",
              image_url="https://cdn3.iconfinder.com/data/icons/animal-flat-colors/64/snake-512.png",
              is_premium=True,
              age_groups=[AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE]),
    Character(id=7, name="Max, o Macaco", description="Um macaco ágil e brincalhão",
              personality="Ágil, brincalhão e inteligente",
              image_url="https://cdn3.iconfinder.com/data/icons/animal-flat-colors/64/monkey-512.png",
              is_premium=True),
]

SEED_THEMES = [
    Theme(id=1, name="Amizade",
          description="Histórias sobre o valor da amizade e trabalho em equipe",
          age_groups=[AgeGroup.TODDLER, AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE]),
    Theme(id=2, name="Natureza e Meio Ambiente",
          description="Histórias sobre a importância de cuidar da natureza",
          age_groups=[AgeGroup.TODDLER, AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE]),
    Theme(id=3, name="Aventuras Incríveis",
          description="Histórias de aventuras emocionantes e descobertas",
          age_groups=[AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE]),
    Theme(id=4, name="Explorando o Espaço",
          description="Histórias sobre viagens espaciais e descobertas cósmicas",
          age_groups=[AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE], is_premium=True),
    Theme(id=5, name="Superando Medos",
          description="Histórias sobre como enfrentar e superar medos",
          age_groups=[AgeGroup.TODDLER, AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE], is_premium=True),
]

SEED_PLANS = [
    SubscriptionPlan(id=1, tier=PlanTier.FREE, name="Plano Gratuito", price_cents=0,
                     description="Plano básico com funcionalidades limitadas",
                     features=["5 histórias por mês", "5 personagens básicos",
                               "3 temas por faixa etária", "Interface básica de leitura"]),
    SubscriptionPlan(id=2, tier=PlanTier.PLUS, name="Plano Leiturinha Plus", price_cents=1490,
                     description="Plano intermediário com mais funcionalidades",
                     features=["Histórias ilimitadas", "Todos os personagens",
                               "Todos os temas disponíveis", "Narração por voz de qualidade",
                               "Sem anúncios", "Download em PDF"]),
    SubscriptionPlan(id=3, tier=PlanTier.FAMILY, name="Plano Família", price_cents=2990,
                     description="Plano completo para toda a família",
                     features=["Todas as funcionalidades do Plus", "Até 4 perfis de crianças",
                               "Histórias personalizadas com nome da criança",
                               "Analytics avançados de leitura", "Suporte prioritário",
                               "Recursos educacionais exclusivos"]),
]


class InMemoryStorage(StorageService):
    """Process-local storage seeded with the default catalog."""

    def __init__(self, seed: bool = True):
        self._stories: Dict[int, Story] = {}
        self._sessions: Dict[int, ReadingSession] = {}
        self._session_index: Dict[Tuple[int, int], int] = {}  # (child_id, story_id) -> session id
        self._profiles: Dict[int, ChildProfile] = {}
        self._characters: Dict[int, Character] = {}
        self._themes: Dict[int, Theme] = {}
        self._plans: List[SubscriptionPlan] = []
        self._next_story_id = 1
        self._next_session_id = 1
        self._next_profile_id = 1
        self._lock = asyncio.Lock()

        if seed:
            self._characters = {c.id: c.model_copy(deep=True) for c in SEED_CHARACTERS}
            self._themes = {t.id: t.model_copy(deep=True) for t in SEED_THEMES}
            self._plans = [p.model_copy(deep=True) for p in SEED_PLANS]

    def _log_write(self, operation: str, path: str, summary: str, start: float):
        get_logger().storage_operation(operation, path, summary, duration=time.time() - start)

    # ===== Stories =====

    async def create_story(self, story: Story) -> Story:
        start = time.time()
        async with self._lock:
            stored = story.model_copy(deep=True)
            stored.id = self._next_story_id
            self._next_story_id += 1
            self._stories[stored.id] = stored
        self._log_write("create", f"stories/{stored.id}", stored.title, start)
        return stored.model_copy(deep=True)

    async def get_story(self, story_id: int) -> Optional[Story]:
        story = self._stories.get(story_id)
        return story.model_copy(deep=True) if story else None

    async def list_stories(self, user_id: int) -> List[Story]:
        stories = [s for s in self._stories.values() if s.user_id == user_id]
        stories.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in stories]

    def _stored_chapter(self, story_id: int, chapter_index: int):
        story = self._stories.get(story_id)
        if story is None:
            raise StoryNotFoundError(story_id)
        if chapter_index < 0 or chapter_index >= len(story.chapters):
            raise ChapterNotFoundError(chapter_index)
        return story.chapters[chapter_index]

    async def update_chapter_image(self, story_id: int, chapter_index: int,
                                   image_url: str, is_backup: bool = False) -> None:
        start = time.time()
        async with self._lock:
            chapter = self._stored_chapter(story_id, chapter_index)
            chapter.image_url = image_url
            chapter.image_is_backup = is_backup
        self._log_write("update", f"stories/{story_id}/chapters/{chapter_index}/image", image_url, start)

    async def update_chapter_audio(self, story_id: int, chapter_index: int, audio_url: str) -> None:
        start = time.time()
        async with self._lock:
            chapter = self._stored_chapter(story_id, chapter_index)
            chapter.audio_url = audio_url
        self._log_write("update", f"stories/{story_id}/chapters/{chapter_index}/audio",
                        f"{len(audio_url)} chars", start)

    # ===== Reading sessions =====

    async def find_reading_session(self, child_id: int, story_id: int) -> Optional[ReadingSession]:
        session_id = self._session_index.get((child_id, story_id))
        if session_id is None:
            return None
        return self._sessions[session_id].model_copy(deep=True)

    async def get_reading_session(self, session_id: int) -> Optional[ReadingSession]:
        session = self._sessions.get(session_id)
        return session.model_copy(deep=True) if session else None

    async def upsert_reading_session(self, session: ReadingSession) -> ReadingSession:
        start = time.time()
        async with self._lock:
            key = (session.child_id, session.story_id)
            stored = session.model_copy(deep=True)
            existing_id = self._session_index.get(key)
            if existing_id is not None:
                stored.id = existing_id
            else:
                stored.id = self._next_session_id
                self._next_session_id += 1
                self._session_index[key] = stored.id
            self._sessions[stored.id] = stored
        self._log_write("upsert", f"reading_sessions/{stored.id}", f"progress={stored.progress}", start)
        return stored.model_copy(deep=True)

    async def list_reading_sessions(self, child_id: int) -> List[ReadingSession]:
        sessions = [s for s in self._sessions.values() if s.child_id == child_id]
        sessions.sort(key=lambda s: s.last_read_at, reverse=True)
        return [s.model_copy(deep=True) for s in sessions]

    # ===== Child profiles =====

    async def create_child_profile(self, profile: ChildProfile) -> ChildProfile:
        start = time.time()
        async with self._lock:
            stored = profile.model_copy(deep=True)
            stored.id = self._next_profile_id
            self._next_profile_id += 1
            self._profiles[stored.id] = stored
        self._log_write("create", f"child_profiles/{stored.id}", stored.name, start)
        return stored.model_copy(deep=True)

    async def get_child_profile(self, child_id: int) -> Optional[ChildProfile]:
        profile = self._profiles.get(child_id)
        return profile.model_copy(deep=True) if profile else None

    async def list_child_profiles(self, parent_id: int) -> List[ChildProfile]:
        return [p.model_copy(deep=True) for p in self._profiles.values() if p.parent_id == parent_id]

    # ===== Catalog =====

    async def get_characters(self) -> List[Character]:
        return [c.model_copy(deep=True) for c in sorted(self._characters.values(), key=lambda c: c.id)]

    async def get_character(self, character_id: int) -> Optional[Character]:
        character = self._characters.get(character_id)
        return character.model_copy(deep=True) if character else None

    async def get_themes(self, age_group: Optional[AgeGroup] = None) -> List[Theme]:
        themes = sorted(self._themes.values(), key=lambda t: t.id)
        if age_group is not None:
            themes = [t for t in themes if t.allows(age_group)]
        return [t.model_copy(deep=True) for t in themes]

    async def get_theme(self, theme_id: int) -> Optional[Theme]:
        theme = self._themes.get(theme_id)
        return theme.model_copy(deep=True) if theme else None

    async def get_subscription_plans(self) -> List[SubscriptionPlan]:
        return [p.model_copy(deep=True) for p in self._plans]
