"""
Provider Router Service

Handles:
1. Provider configuration loading from YAML
2. Tier resolution (which text providers a plan may use, token budget, entitlements)
3. Environment variable overrides for A/B testing

Usage:
    from leiturinha.services.provider_router import get_provider_router

    router = get_provider_router()
    providers = router.get_text_providers("plus")   # ["openai", "anthropic"]
    kwargs = router.get_text_kwargs("openai", "plus")
"""

import os
import yaml
import logging
from typing import Dict, Optional, Any, List, FrozenSet
from pathlib import Path

from leiturinha.models.profiles import Entitlement, PlanTier

logger = logging.getLogger(__name__)

DEFAULT_TIER = PlanTier.FREE.value


class ProviderRouter:
    """YAML-driven routing of text, image and audio requests to providers"""

    def __init__(self, config_path: str = None):
        """
        Initialize Provider Router.

        Args:
            config_path: Path to providers.yaml config file.
                         If None, uses leiturinha/config/providers.yaml
        """
        if config_path is None:
            config_path = Path(__file__).parent.parent / "config" / "providers.yaml"
        self.config_path = config_path
        self.config = self._load_config(config_path)
        self._apply_env_overrides()

    def _load_config(self, config_path: str) -> dict:
        """Load YAML config file"""
        with open(config_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}

    def _apply_env_overrides(self):
        """
        Apply environment variable overrides for A/B testing.

        Supports:
        - TEST_<PROVIDER>_TEXT_MODEL: Override the text model of a provider
        - TEST_<PROVIDER>_IMAGE_MODEL: Override the image model of a provider
        """
        for provider_name, provider_cfg in self.config.get("providers", {}).items():
            for kind in ("text", "image"):
                env_key = f"TEST_{provider_name.upper()}_{kind.upper()}_MODEL"
                env_value = os.getenv(env_key)
                if env_value:
                    provider_cfg[f"{kind}_model"] = env_value
                    logger.info(f"🔬 A/B Override: {provider_name} {kind} → {env_value}")

    def _tier_config(self, tier: str) -> dict:
        tiers = self.config.get("tiers", {})
        if tier not in tiers:
            logger.warning(f"Unknown tier '{tier}', falling back to {DEFAULT_TIER}")
            return tiers.get(DEFAULT_TIER, {})
        return tiers[tier]

    def get_provider_config(self, provider_name: str) -> dict:
        return self.config.get("providers", {}).get(provider_name, {})

    def get_text_providers(self, tier: str = DEFAULT_TIER) -> List[str]:
        """
        Text providers a tier may use, in fallback order.

        Args:
            tier: Plan tier identifier ("free", "plus", "family")

        Returns:
            Provider names, first one is the primary
        """
        providers = self._tier_config(tier).get("text_providers")
        if not providers:
            return ["openai"]
        return list(providers)

    def get_text_model(self, provider_name: str) -> str:
        return self.get_provider_config(provider_name).get("text_model", "")

    def get_max_tokens(self, tier: str = DEFAULT_TIER) -> int:
        default_cfg = self.config.get("default", {})
        return self._tier_config(tier).get("max_tokens", default_cfg.get("max_tokens", 4000))

    def get_text_kwargs(self, provider_name: str, tier: str = DEFAULT_TIER,
                        temperature: float = None, max_tokens: int = None) -> dict:
        """
        Build text-generation kwargs for a provider.

        Requested max_tokens is capped by the tier budget.

        Returns:
            Dict with model, temperature and max_tokens
        """
        default_cfg = self.config.get("default", {})
        tier_budget = self.get_max_tokens(tier)

        kwargs = {
            "model": self.get_text_model(provider_name),
            "temperature": temperature if temperature is not None else default_cfg.get("temperature", 0.7),
            "max_tokens": min(max_tokens, tier_budget) if max_tokens else tier_budget,
        }
        return kwargs

    def get_image_config(self) -> Dict[str, Any]:
        """Image provider name plus its model, size and quality."""
        provider_name = self.config.get("default", {}).get("image_provider", "openai")
        provider_cfg = self.get_provider_config(provider_name)
        return {
            "provider": provider_name,
            "model": provider_cfg.get("image_model", "dall-e-3"),
            "size": provider_cfg.get("image_size", "1024x1024"),
            "quality": provider_cfg.get("image_quality", "standard"),
        }

    def get_audio_config(self) -> Dict[str, Any]:
        """Audio provider name plus its TTS model and voice."""
        provider_name = self.config.get("default", {}).get("audio_provider", "openai")
        provider_cfg = self.get_provider_config(provider_name)
        return {
            "provider": provider_name,
            "model": provider_cfg.get("tts_model", "tts-1"),
            "voice": provider_cfg.get("tts_voice", "shimmer"),
        }

    def get_entitlements(self, tier: str = DEFAULT_TIER) -> FrozenSet[Entitlement]:
        """
        Entitlements granted by a tier.

        Unknown entitlement names in the YAML are logged and skipped.
        """
        granted = set()
        for name in self._tier_config(tier).get("entitlements", []) or []:
            try:
                granted.add(Entitlement(name))
            except ValueError:
                logger.warning(f"Ignoring unknown entitlement '{name}' for tier {tier}")
        return frozenset(granted)

    def list_tiers(self) -> List[str]:
        return list(self.config.get("tiers", {}).keys())

    def get_active_overrides(self) -> Dict[str, str]:
        """
        Get currently active model overrides from the environment.

        Returns:
            Dict mapping provider/kind to override model
        """
        overrides = {}
        for provider_name in self.config.get("providers", {}):
            for kind in ("text", "image"):
                env_value = os.getenv(f"TEST_{provider_name.upper()}_{kind.upper()}_MODEL")
                if env_value:
                    overrides[f"{provider_name}:{kind}"] = env_value
        return overrides

    def log_configuration(self, use_print: bool = True):
        """
        Log current provider configuration for all tiers.

        Args:
            use_print: If True, use print() for console visibility.
                       If False, use logger.info() for file logs only.
        """
        output = print if use_print else logger.info

        output("📋 Provider Router Configuration:")

        overrides = self.get_active_overrides()
        if overrides:
            output("  🔄 Active overrides (from env vars):")
            for name, model in overrides.items():
                output(f"    • {name} → {model}")

        output("  💳 Tiers:")
        for tier in self.list_tiers():
            providers = " → ".join(
                f"{name}/{self.get_text_model(name)}" for name in self.get_text_providers(tier)
            )
            entitlements = ", ".join(sorted(e.value for e in self.get_entitlements(tier))) or "none"
            output(f"    • {tier}: {providers} [max_tokens={self.get_max_tokens(tier)}; {entitlements}]")


# Singleton instance
_provider_router: Optional[ProviderRouter] = None


def get_provider_router() -> ProviderRouter:
    """
    Get singleton Provider Router instance.

    Returns:
        ProviderRouter instance (creates one if not initialized)
    """
    global _provider_router
    if _provider_router is None:
        _provider_router = ProviderRouter()
    return _provider_router


def init_provider_router(config_path: str = None) -> ProviderRouter:
    """
    Initialize Provider Router (call at app startup).

    Args:
        config_path: Optional path to providers.yaml

    Returns:
        Initialized ProviderRouter instance
    """
    global _provider_router
    _provider_router = ProviderRouter(config_path)
    return _provider_router


def reset_provider_router():
    """Reset the singleton (useful for testing)."""
    global _provider_router
    _provider_router = None
