"""
Unit tests for the AI Provider Gateway with fake SDK clients.

No network: the OpenAI and Anthropic clients are MagicMocks whose async
methods are AsyncMocks.

Run with: python -m pytest tests/test_gateway.py -v
"""

import asyncio
import base64
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.config.limits import TTS_MAX_CHARS
from leiturinha.config.settings import Settings
from leiturinha.models.models import ImageGenerationParams, StoryGenerationParams
from leiturinha.services.errors import ProviderOutcome
from leiturinha.services.gateway import (
    AIProviderGateway,
    audio_data_url,
    get_gateway,
    init_gateway,
    reset_gateway,
)
from leiturinha.services.provider_router import ProviderRouter


class RateLimitError(Exception):
    status_code = 429


class AuthenticationError(Exception):
    status_code = 401


def openai_completion(content: str):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=20),
        model="gpt-4o",
    )


def anthropic_message(content: str):
    return SimpleNamespace(
        content=[SimpleNamespace(text=content)],
        usage=SimpleNamespace(input_tokens=11, output_tokens=22),
        model="claude-3-7-sonnet-latest",
    )


def make_openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=openai_completion("# Título\n\nTexto."))
    client.images.generate = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(url="https://images.example.com/1.png")])
    )
    client.audio.speech.create = AsyncMock(return_value=SimpleNamespace(content=b"ID3audio"))
    return client


def make_anthropic_client():
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=anthropic_message("# Outro\n\nTexto."))
    return client


def story_params(tier: str = "free") -> StoryGenerationParams:
    return StoryGenerationParams(prompt="Crie uma história", system_message="Você é um escritor", tier=tier)


class TestStoryGeneration:
    """Text calls, tier fallback and error tagging"""

    def setup_method(self):
        self.settings = Settings(openai_api_key="sk-test", claude_api_key="sk-ant-test",
                                 provider_timeout_seconds=1.0)
        self.openai = make_openai_client()
        self.anthropic = make_anthropic_client()
        self.gateway = AIProviderGateway(
            settings=self.settings,
            router=ProviderRouter(),
            openai_client=self.openai,
            anthropic_client=self.anthropic,
        )

    def test_free_tier_uses_openai(self):
        result = asyncio.run(self.gateway.generate_story(story_params("free")))

        assert result.ok
        assert result.data.provider == "openai"
        assert result.data.usage == {"prompt_tokens": 10, "completion_tokens": 20}
        kwargs = self.openai.chat.completions.create.call_args.kwargs
        assert kwargs["max_tokens"] == 4000
        assert kwargs["messages"][0] == {"role": "system", "content": "Você é um escritor"}

    def test_rate_limit_falls_back_for_paid_tier(self):
        self.openai.chat.completions.create.side_effect = RateLimitError("rate limited")

        result = asyncio.run(self.gateway.generate_story(story_params("plus")))

        assert result.ok
        assert result.data.provider == "anthropic"
        assert self.anthropic.messages.create.call_args.kwargs["max_tokens"] == 16000

    def test_rate_limit_on_free_tier_has_no_fallback(self):
        self.openai.chat.completions.create.side_effect = RateLimitError("rate limited")

        result = asyncio.run(self.gateway.generate_story(story_params("free")))

        assert result.outcome == ProviderOutcome.RATE_LIMIT
        assert result.retryable
        self.anthropic.messages.create.assert_not_called()

    def test_auth_error_stops_fallback(self):
        self.openai.chat.completions.create.side_effect = AuthenticationError("bad key")

        result = asyncio.run(self.gateway.generate_story(story_params("family")))

        assert result.outcome == ProviderOutcome.AUTH_ERROR
        self.anthropic.messages.create.assert_not_called()

    def test_empty_completion_is_format_error(self):
        self.openai.chat.completions.create.return_value = openai_completion("   ")

        result = asyncio.run(self.gateway.generate_story(story_params()))

        assert result.outcome == ProviderOutcome.FORMAT_ERROR

    def test_timeout_is_connectivity(self):
        async def never_answers(**kwargs):
            await asyncio.sleep(5)

        self.gateway.timeout = 0.05
        self.openai.chat.completions.create = never_answers

        result = asyncio.run(self.gateway.generate_story(story_params()))

        assert result.outcome == ProviderOutcome.CONNECTIVITY
        assert result.retryable

    def test_missing_key_is_auth_error(self):
        gateway = AIProviderGateway(settings=Settings(openai_api_key=None, claude_api_key=None),
                                    router=ProviderRouter())

        result = asyncio.run(gateway.generate_story(story_params()))

        assert result.outcome == ProviderOutcome.AUTH_ERROR
        assert gateway.get_status() == {"openai": False, "anthropic": False}

    def test_unconfigured_fallback_is_skipped(self):
        gateway = AIProviderGateway(settings=Settings(openai_api_key="sk-test", claude_api_key=None),
                                    router=ProviderRouter(), openai_client=self.openai)
        self.openai.chat.completions.create.side_effect = RateLimitError("rate limited")

        result = asyncio.run(gateway.generate_story(story_params("plus")))

        assert result.outcome == ProviderOutcome.RATE_LIMIT


class TestImagesAndAudio:
    def setup_method(self):
        self.settings = Settings(openai_api_key="sk-test", provider_timeout_seconds=1.0)
        self.openai = make_openai_client()
        self.gateway = AIProviderGateway(settings=self.settings, router=ProviderRouter(),
                                         openai_client=self.openai)

    def test_chapter_image_prompt_and_url(self):
        params = ImageGenerationParams(prompt="Leão na floresta", character_names=["Léo, o Leão"],
                                       story_id=1, chapter_index=0)

        result = asyncio.run(self.gateway.generate_chapter_image(params))

        assert result.ok
        assert result.data.image_url == "https://images.example.com/1.png"
        kwargs = self.openai.images.generate.call_args.kwargs
        assert kwargs["model"] == "dall-e-3"
        assert kwargs["size"] == "1024x1024"
        assert kwargs["response_format"] == "url"
        assert "Leão na floresta" in kwargs["prompt"]
        assert "Léo, o Leão" in kwargs["prompt"]

    def test_image_without_url_is_format_error(self):
        self.openai.images.generate.return_value = SimpleNamespace(data=[])

        result = asyncio.run(self.gateway.generate_chapter_image(ImageGenerationParams(prompt="x")))

        assert result.outcome == ProviderOutcome.FORMAT_ERROR

    def test_image_rate_limit_is_tagged(self):
        self.openai.images.generate.side_effect = RateLimitError("429")

        result = asyncio.run(self.gateway.generate_chapter_image(ImageGenerationParams(prompt="x")))

        assert result.outcome == ProviderOutcome.RATE_LIMIT

    def test_audio_input_is_truncated(self):
        result = asyncio.run(self.gateway.generate_audio("a" * (TTS_MAX_CHARS + 500)))

        assert result.ok
        assert result.data == b"ID3audio"
        kwargs = self.openai.audio.speech.create.call_args.kwargs
        assert len(kwargs["input"]) == TTS_MAX_CHARS
        assert kwargs["voice"] == "shimmer"
        assert kwargs["model"] == "tts-1"

    def test_audio_data_url(self):
        url = audio_data_url(b"mp3")
        assert url == "data:audio/mpeg;base64," + base64.b64encode(b"mp3").decode("ascii")


class TestSingleton:
    def setup_method(self):
        reset_gateway()

    def teardown_method(self):
        reset_gateway()

    def test_init_replaces_instance(self):
        settings = Settings(openai_api_key="sk-test", provider_timeout_seconds=5)
        gateway = init_gateway(settings, router=ProviderRouter())

        assert get_gateway() is gateway
        assert gateway.timeout == 5
        assert gateway.is_configured("openai")
