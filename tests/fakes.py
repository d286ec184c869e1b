"""
Test doubles shared by the unit tests.

FakeGateway answers from scripted queues instead of calling OpenAI/Anthropic.
"""

import asyncio
from typing import List, Optional

from leiturinha.models.models import GeneratedImage, GeneratedText, Story, Chapter, AgeGroup
from leiturinha.models.profiles import SessionContext, PlanTier
from leiturinha.services.errors import ProviderError, ProviderResult
from leiturinha.services.provider_router import ProviderRouter


MARKDOWN_STORY = """# Léo e a Floresta Encantada

Léo era um leão muito corajoso. Ele adorava explorar a floresta com seus amigos. Um dia, algo mudou.

## O Chamado da Floresta

Léo ouviu um barulho estranho vindo das árvores.

[IMAGEM: Léo, o leão, olhando curioso para árvores altas na floresta]

## O Encontro com Bia

Bia, a borboleta, apareceu e contou que a floresta precisava de ajuda.

[IMAGEM: Uma borboleta colorida conversando com um leão]

## A Grande Aventura

Juntos, eles seguiram o rio até a cachoeira mágica.

## Amigos para Sempre

No final, todos comemoraram e aprenderam o valor da amizade.
"""


class FakeGateway:
    """Scripted stand-in for AIProviderGateway"""

    def __init__(self, story_text: str = MARKDOWN_STORY, router: Optional[ProviderRouter] = None):
        self.router = router or ProviderRouter()
        self.story_text = story_text
        self.story_error: Optional[ProviderError] = None
        self.image_errors: dict = {}  # chapter_index -> ProviderError
        self.image_delay = 0.0
        self.audio_error: Optional[ProviderError] = None
        self.story_calls: List = []
        self.image_calls: List = []
        self.audio_calls: List[str] = []

    async def generate_story(self, params):
        self.story_calls.append(params)
        if self.story_error is not None:
            return ProviderResult.failure(self.story_error)
        return ProviderResult.success(
            GeneratedText(content=self.story_text, provider="openai", model="gpt-4o"), "openai"
        )

    async def generate_chapter_image(self, params):
        self.image_calls.append(params)
        if self.image_delay:
            await asyncio.sleep(self.image_delay)
        error = self.image_errors.get(params.chapter_index)
        if error is not None:
            return ProviderResult.failure(error)
        return ProviderResult.success(
            GeneratedImage(
                image_url=f"https://images.example.com/{params.story_id}/{params.chapter_index}/{len(self.image_calls)}.png",
                provider="openai",
                model="dall-e-3",
            ),
            "openai",
        )

    async def generate_audio(self, text: str):
        self.audio_calls.append(text)
        if self.audio_error is not None:
            return ProviderResult.failure(self.audio_error)
        return ProviderResult.success(b"ID3fake-mp3", "openai")

    def get_status(self) -> dict:
        return {"openai": True, "anthropic": False}


def make_session(user_id: int = 1, tier: PlanTier = PlanTier.FREE, router: Optional[ProviderRouter] = None,
                 role: str = "parent") -> SessionContext:
    router = router or ProviderRouter()
    return SessionContext(
        user_id=user_id,
        tier=tier,
        role=role,
        entitlements=router.get_entitlements(tier.value),
    )


def make_story(chapter_count: int = 3, story_id: Optional[int] = None, user_id: int = 1) -> Story:
    chapters = [
        Chapter(
            title=f"Capítulo {i + 1}",
            content=f"Conteúdo do capítulo {i + 1}.",
            image_prompt=f"Cena do capítulo {i + 1} na floresta" if i % 2 == 0 else f"Cena do capítulo {i + 1}",
        )
        for i in range(chapter_count)
    ]
    return Story(
        id=story_id,
        user_id=user_id,
        title="Uma Aventura",
        content="\n\n".join(c.content for c in chapters),
        summary="Uma história sobre Amizade",
        age_group=AgeGroup.EARLY_READER,
        character_ids=[1, 2],
        theme_id=1,
        chapters=chapters,
    )
