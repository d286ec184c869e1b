"""
AI Provider Gateway

Single entry point for every generative-AI call:
- Text: OpenAI chat completions, Anthropic messages as fallback for paid tiers
- Images: OpenAI images (dall-e-3)
- Audio: OpenAI speech (tts-1)

Every call is bounded by `provider_timeout_seconds` and returns a tagged
ProviderResult instead of raising. Text generation walks the tier's
providers in order and moves on only when the failure is retryable
(rate limit, connectivity); auth and format errors stop immediately.

Usage:
    from leiturinha.services.gateway import get_gateway

    gateway = get_gateway()
    result = await gateway.generate_story(params)
    if result.ok:
        print(result.data.content)
"""

import asyncio
import base64
import logging
import time
from typing import Any, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from leiturinha.config.limits import TTS_MAX_CHARS
from leiturinha.config.settings import Settings, get_settings
from leiturinha.models.models import (
    GeneratedImage,
    GeneratedText,
    ImageGenerationParams,
    StoryGenerationParams,
)
from leiturinha.prompts.illustration import get_chapter_illustration_prompt
from leiturinha.services.errors import (
    GenerationFormatError,
    ProviderAuthError,
    ProviderConnectivityError,
    ProviderResult,
    classify_provider_exception,
)
from leiturinha.services.logger import get_logger
from leiturinha.services.provider_router import ProviderRouter, get_provider_router

logger = logging.getLogger(__name__)

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"


class AIProviderGateway:
    """
    Wraps the OpenAI and Anthropic SDKs behind tagged results.

    Clients are created lazily from settings; tests inject fakes through
    `openai_client` / `anthropic_client`.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        router: Optional[ProviderRouter] = None,
        openai_client: Any = None,
        anthropic_client: Any = None,
    ):
        self.settings = settings or get_settings()
        self.router = router or get_provider_router()
        self.timeout = self.settings.provider_timeout_seconds
        self._openai_client = openai_client
        self._anthropic_client = anthropic_client

    # =====================================================================
    # Clients
    # =====================================================================

    def _get_openai_client(self):
        if self._openai_client is None:
            if not self.settings.openai_api_key:
                raise ProviderAuthError("OPENAI_API_KEY is not configured", PROVIDER_OPENAI)
            self._openai_client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.timeout,
                max_retries=0,  # Retries are the caller's decision
            )
        return self._openai_client

    def _get_anthropic_client(self):
        if self._anthropic_client is None:
            if not self.settings.claude_api_key:
                raise ProviderAuthError("CLAUDE_API_KEY is not configured", PROVIDER_ANTHROPIC)
            self._anthropic_client = AsyncAnthropic(
                api_key=self.settings.claude_api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._anthropic_client

    def is_configured(self, provider: str) -> bool:
        if provider == PROVIDER_OPENAI:
            return self._openai_client is not None or bool(self.settings.openai_api_key)
        if provider == PROVIDER_ANTHROPIC:
            return self._anthropic_client is not None or bool(self.settings.claude_api_key)
        return False

    def get_status(self) -> dict:
        """Which providers can be called right now (for /health)"""
        return {
            PROVIDER_OPENAI: self.is_configured(PROVIDER_OPENAI),
            PROVIDER_ANTHROPIC: self.is_configured(PROVIDER_ANTHROPIC),
        }

    async def _bounded(self, provider: str, call):
        """Await a provider coroutine with the configured timeout"""
        try:
            return await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderConnectivityError(
                f"{provider} did not answer within {self.timeout:.0f}s", provider
            )

    # =====================================================================
    # Text
    # =====================================================================

    async def _openai_text(self, params: StoryGenerationParams) -> GeneratedText:
        client = self._get_openai_client()
        kwargs = self.router.get_text_kwargs(
            PROVIDER_OPENAI, params.tier, params.temperature, params.max_tokens
        )
        response = await self._bounded(PROVIDER_OPENAI, client.chat.completions.create(
            model=kwargs["model"],
            messages=[
                {"role": "system", "content": params.system_message},
                {"role": "user", "content": params.prompt},
            ],
            temperature=kwargs["temperature"],
            max_tokens=kwargs["max_tokens"],
        ))

        choices = getattr(response, "choices", None)
        content = choices[0].message.content if choices else None
        if not content or not content.strip():
            raise GenerationFormatError("OpenAI returned an empty completion", PROVIDER_OPENAI)

        usage = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
            }
        return GeneratedText(
            content=content,
            provider=PROVIDER_OPENAI,
            model=getattr(response, "model", None) or kwargs["model"],
            usage=usage,
        )

    async def _anthropic_text(self, params: StoryGenerationParams) -> GeneratedText:
        client = self._get_anthropic_client()
        kwargs = self.router.get_text_kwargs(
            PROVIDER_ANTHROPIC, params.tier, params.temperature, params.max_tokens
        )
        response = await self._bounded(PROVIDER_ANTHROPIC, client.messages.create(
            model=kwargs["model"],
            system=params.system_message,
            messages=[{"role": "user", "content": params.prompt}],
            temperature=kwargs["temperature"],
            max_tokens=kwargs["max_tokens"],
        ))

        blocks = getattr(response, "content", None) or []
        content = "".join(getattr(block, "text", "") for block in blocks)
        if not content.strip():
            raise GenerationFormatError("Anthropic returned an empty message", PROVIDER_ANTHROPIC)

        usage = {}
        if getattr(response, "usage", None) is not None:
            usage = {
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
            }
        return GeneratedText(
            content=content,
            provider=PROVIDER_ANTHROPIC,
            model=getattr(response, "model", None) or kwargs["model"],
            usage=usage,
        )

    async def _generate_text_with(self, provider: str, params: StoryGenerationParams) -> ProviderResult[GeneratedText]:
        text_calls = {
            PROVIDER_OPENAI: self._openai_text,
            PROVIDER_ANTHROPIC: self._anthropic_text,
        }
        if provider not in text_calls:
            return ProviderResult.failure(
                ProviderAuthError(f"Unknown text provider '{provider}'", provider)
            )

        start = time.time()
        try:
            generated = await text_calls[provider](params)
        except Exception as e:
            error = classify_provider_exception(e, provider)
            logger.warning(f"⚠️ {provider} text generation failed: {type(error).__name__}: {error}")
            get_logger().provider_api_call(provider, self.router.get_text_model(provider), "text",
                                           latency=time.time() - start, status="error")
            return ProviderResult.failure(error)

        get_logger().provider_api_call(
            provider, generated.model, "text",
            prompt_tokens=generated.usage.get("prompt_tokens") or 0,
            completion_tokens=generated.usage.get("completion_tokens") or 0,
            latency=time.time() - start,
        )
        return ProviderResult.success(generated, provider)

    async def generate_story(self, params: StoryGenerationParams) -> ProviderResult[GeneratedText]:
        """
        Generate story text with the tier's providers.

        Falls back to the next allowed provider only on retryable errors.
        """
        providers = self.router.get_text_providers(params.tier)
        result: Optional[ProviderResult[GeneratedText]] = None

        for position, provider in enumerate(providers):
            # Unconfigured fallbacks are skipped; an unconfigured primary is an auth error
            if position > 0 and not self.is_configured(provider):
                logger.info(f"Skipping {provider} fallback: no API key configured")
                continue

            logger.info(f"🔷 Text request: provider={provider}, tier={params.tier}")
            result = await self._generate_text_with(provider, params)
            if result.ok or not result.retryable:
                return result
            logger.warning(f"🔄 {provider} unavailable ({result.outcome.value}), trying next provider")

        return result

    # =====================================================================
    # Images
    # =====================================================================

    async def generate_chapter_image(self, params: ImageGenerationParams) -> ProviderResult[GeneratedImage]:
        """Generate one chapter illustration and return its URL"""
        image_cfg = self.router.get_image_config()
        provider = image_cfg["provider"]
        prompt = get_chapter_illustration_prompt(
            params.prompt,
            character_names=params.character_names,
            style=params.style,
            mood=params.mood,
            age_group=params.age_group,
        )

        start = time.time()
        try:
            client = self._get_openai_client()
            response = await self._bounded(provider, client.images.generate(
                model=image_cfg["model"],
                prompt=prompt,
                n=1,
                size=image_cfg["size"],
                quality=image_cfg["quality"],
                response_format="url",
            ))
            data = getattr(response, "data", None) or []
            image_url = getattr(data[0], "url", None) if data else None
            if not image_url:
                raise GenerationFormatError("Image provider returned no URL", provider)
        except Exception as e:
            error = classify_provider_exception(e, provider)
            logger.warning(
                f"⚠️ Image generation failed (story={params.story_id}, "
                f"chapter={params.chapter_index}): {type(error).__name__}: {error}"
            )
            get_logger().provider_api_call(provider, image_cfg["model"], "image",
                                           latency=time.time() - start, status="error")
            return ProviderResult.failure(error)

        get_logger().provider_api_call(provider, image_cfg["model"], "image", latency=time.time() - start)
        return ProviderResult.success(
            GeneratedImage(
                image_url=image_url,
                provider=provider,
                model=image_cfg["model"],
                prompt_used=prompt,
            ),
            provider,
        )

    # =====================================================================
    # Audio
    # =====================================================================

    async def generate_audio(self, text: str) -> ProviderResult[bytes]:
        """
        Narrate text as mp3 bytes.

        Input is truncated to TTS_MAX_CHARS.
        """
        audio_cfg = self.router.get_audio_config()
        provider = audio_cfg["provider"]

        if not text or not text.strip():
            return ProviderResult.failure(GenerationFormatError("Nothing to narrate", provider))

        start = time.time()
        try:
            client = self._get_openai_client()
            response = await self._bounded(provider, client.audio.speech.create(
                model=audio_cfg["model"],
                voice=audio_cfg["voice"],
                input=text[:TTS_MAX_CHARS],
                response_format="mp3",
            ))
            audio_bytes = getattr(response, "content", None)
            if not audio_bytes:
                raise GenerationFormatError("Speech provider returned no audio", provider)
        except Exception as e:
            error = classify_provider_exception(e, provider)
            logger.warning(f"⚠️ Audio generation failed: {type(error).__name__}: {error}")
            get_logger().provider_api_call(provider, audio_cfg["model"], "audio",
                                           latency=time.time() - start, status="error")
            return ProviderResult.failure(error)

        get_logger().provider_api_call(provider, audio_cfg["model"], "audio", latency=time.time() - start)
        return ProviderResult.success(audio_bytes, provider)


def audio_data_url(audio_bytes: bytes) -> str:
    """Embed mp3 bytes as a data URL stored on the chapter"""
    return "data:audio/mpeg;base64," + base64.b64encode(audio_bytes).decode("ascii")


# Singleton instance
_gateway: Optional[AIProviderGateway] = None


def get_gateway() -> AIProviderGateway:
    global _gateway
    if _gateway is None:
        _gateway = AIProviderGateway()
    return _gateway


def init_gateway(settings: Optional[Settings] = None, **kwargs) -> AIProviderGateway:
    """Initialize the gateway (call at app startup)"""
    global _gateway
    _gateway = AIProviderGateway(settings=settings, **kwargs)
    return _gateway


def reset_gateway():
    """Reset the singleton (useful for testing)."""
    global _gateway
    _gateway = None
