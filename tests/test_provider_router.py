"""
Unit tests for Provider Router - verifies tier routing without provider calls.

Tests tier resolution, token budgets, entitlements and environment
variable overrides.

Run with: python -m pytest tests/test_provider_router.py -v
"""

import os
import sys
import tempfile
from pathlib import Path

import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.models.profiles import Entitlement
from leiturinha.services.provider_router import (
    ProviderRouter,
    get_provider_router,
    init_provider_router,
    reset_provider_router,
)


def _clear_test_env():
    for key in list(os.environ.keys()):
        if key.startswith('TEST_') and key.endswith('_MODEL'):
            del os.environ[key]


class TestTierRouting:
    """Which providers, budgets and entitlements each plan gets"""

    def setup_method(self):
        reset_provider_router()
        _clear_test_env()

    def teardown_method(self):
        reset_provider_router()
        _clear_test_env()

    def test_free_tier_uses_openai_only(self):
        router = ProviderRouter()
        assert router.get_text_providers("free") == ["openai"]

    def test_paid_tiers_fall_back_to_anthropic(self):
        router = ProviderRouter()
        for tier in ("plus", "family"):
            assert router.get_text_providers(tier) == ["openai", "anthropic"], \
                f"{tier} should fall back to anthropic"

    def test_max_tokens_per_tier(self):
        router = ProviderRouter()
        assert router.get_max_tokens("free") == 4000
        assert router.get_max_tokens("plus") == 16000
        assert router.get_max_tokens("family") == 32000

    def test_requested_tokens_capped_by_tier(self):
        router = ProviderRouter()
        kwargs = router.get_text_kwargs("openai", "free", temperature=0.5, max_tokens=10000)
        assert kwargs == {"model": "gpt-4o", "temperature": 0.5, "max_tokens": 4000}

    def test_entitlements_per_tier(self):
        router = ProviderRouter()
        assert router.get_entitlements("free") == frozenset()
        assert router.get_entitlements("plus") == {Entitlement.NARRATION, Entitlement.PREMIUM_CONTENT}
        assert Entitlement.PERSONALIZATION in router.get_entitlements("family")

    def test_unknown_tier_falls_back_to_free(self):
        router = ProviderRouter()
        assert router.get_text_providers("platinum") == ["openai"]
        assert router.get_entitlements("platinum") == frozenset()

    def test_image_and_audio_config(self):
        router = ProviderRouter()
        image = router.get_image_config()
        audio = router.get_audio_config()
        assert image == {"provider": "openai", "model": "dall-e-3", "size": "1024x1024", "quality": "standard"}
        assert audio == {"provider": "openai", "model": "tts-1", "voice": "shimmer"}


class TestOverridesAndConfig:
    def setup_method(self):
        reset_provider_router()
        _clear_test_env()

    def teardown_method(self):
        reset_provider_router()
        _clear_test_env()

    def test_env_override_replaces_text_model(self):
        os.environ['TEST_OPENAI_TEXT_MODEL'] = 'gpt-4o-mini'
        router = ProviderRouter()

        assert router.get_text_model("openai") == "gpt-4o-mini"
        assert router.get_active_overrides() == {"openai:text": "gpt-4o-mini"}

    def test_custom_config_file(self):
        config = {
            "default": {"temperature": 0.3},
            "providers": {"openai": {"text_model": "gpt-test"}},
            "tiers": {"free": {"text_providers": ["openai"], "max_tokens": 100, "entitlements": ["narration", "bogus"]}},
        }
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8") as f:
            yaml.safe_dump(config, f)
            path = f.name
        try:
            router = ProviderRouter(path)
            assert router.get_text_kwargs("openai") == {"model": "gpt-test", "temperature": 0.3, "max_tokens": 100}
            # Unknown entitlement names are skipped
            assert router.get_entitlements("free") == {Entitlement.NARRATION}
        finally:
            os.unlink(path)

    def test_singleton_lifecycle(self):
        first = get_provider_router()
        assert get_provider_router() is first
        second = init_provider_router()
        assert get_provider_router() is second
        assert second is not first
