"""
Unit tests for application settings.

Run with: python -m pytest tests/test_settings.py -v
"""

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.config.settings import Settings
from leiturinha.models.models import IllustrationMood, IllustrationStyle


class TestIllustrationDefaults:
    def test_valid_values_become_enums(self):
        settings = Settings(illustration_default_style="watercolor", illustration_default_mood="calm")

        assert settings.illustration_default_style == IllustrationStyle.WATERCOLOR
        assert settings.illustration_default_mood == IllustrationMood.CALM

    def test_unknown_style_fails_at_load(self):
        with pytest.raises(ValidationError):
            Settings(illustration_default_style="crayon")

    def test_unknown_mood_fails_from_environment(self, monkeypatch):
        monkeypatch.setenv("ILLUSTRATION_DEFAULT_MOOD", "gloomy")
        with pytest.raises(ValidationError):
            Settings()
