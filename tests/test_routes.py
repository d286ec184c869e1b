"""
API tests for the REST routes, with a scripted gateway behind the app.

Run with: python -m pytest tests/test_routes.py -v
"""

import sys
from pathlib import Path

from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.api.routes import set_services
from leiturinha.config.settings import DEFAULT_BACKUP_IMAGES, Settings
from leiturinha.main import app
from leiturinha.services import build_services
from leiturinha.services.errors import ProviderConnectivityError, ProviderRateLimitError
from leiturinha.services.events import EventEmitter
from leiturinha.services.rate_limiter import ProviderConcurrencyLimiter
from leiturinha.services.storage import InMemoryStorage

from fakes import FakeGateway

FREE = {"X-User-Id": "1", "X-Plan-Tier": "free"}
PLUS = {"X-User-Id": "1", "X-Plan-Tier": "plus"}
OTHER_USER = {"X-User-Id": "2", "X-Plan-Tier": "free"}

SELECTION = {"age_group": "6-8", "character_ids": [1, 2], "theme_id": 1}


class RouteTestCase:
    """Runs the app lifespan once per test, then swaps in test services"""

    settings_overrides: dict = {}

    def setup_method(self):
        self.client = TestClient(app)
        self.client.__enter__()

        self.gateway = FakeGateway()
        self.storage = InMemoryStorage()
        settings = Settings(backup_images=DEFAULT_BACKUP_IMAGES, **self.settings_overrides)
        set_services(build_services(
            settings,
            self.storage,
            gateway=self.gateway,
            events=EventEmitter(),
            limiter=ProviderConcurrencyLimiter(max_concurrent=2),
        ))

    def teardown_method(self):
        self.client.__exit__(None, None, None)

    def create_story(self, headers=FREE, **overrides) -> dict:
        body = dict(SELECTION, **overrides)
        response = self.client.post("/api/stories/generate", json=body, headers=headers)
        assert response.status_code == 200, response.text
        return response.json()["story"]


class TestStoryRoutes(RouteTestCase):
    def test_generate_story(self):
        response = self.client.post("/api/stories/generate", json=SELECTION, headers=FREE)

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["story"]["title"] == "Léo e a Floresta Encantada"
        assert len(data["story"]["chapters"]) == 4
        assert data["illustrations_pending"] is False
        assert f"/api/stories/{data['story']['id']}" in data["invalidates"]
        assert self.gateway.image_calls == []

    def test_missing_theme_is_rejected_without_provider_call(self):
        body = dict(SELECTION, theme_id=0)
        response = self.client.post("/api/stories/generate", json=body, headers=FREE)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert self.gateway.story_calls == []

    def test_premium_theme_needs_paid_plan(self):
        body = dict(SELECTION, theme_id=4)

        assert self.client.post("/api/stories/generate", json=body, headers=FREE).status_code == 403
        assert self.client.post("/api/stories/generate", json=body, headers=PLUS).status_code == 200

    def test_too_many_characters_is_validation_error(self):
        body = dict(SELECTION, character_ids=[1, 2, 3, 4])
        response = self.client.post("/api/stories/generate", json=body, headers=FREE)

        assert response.status_code == 400
        assert response.json()["errors"]

    def test_missing_user_header(self):
        response = self.client.post("/api/stories/generate", json=SELECTION)
        assert response.status_code == 400

    def test_provider_failure_is_retryable(self):
        self.gateway.story_error = ProviderRateLimitError("429", "openai", retry_after=7)

        response = self.client.post("/api/stories/generate", json=SELECTION, headers=FREE)

        assert response.status_code == 429
        assert response.json()["retryable"] is True
        assert response.headers["Retry-After"] == "7"

    def test_eager_illustrations_run_in_background(self):
        story = self.create_story(text_only=False)

        # TestClient completes background tasks before returning
        response = self.client.get(f"/api/stories/{story['id']}", headers=FREE)
        chapters = response.json()["story"]["chapters"]
        assert all(c["image_url"] for c in chapters)
        assert len(self.gateway.image_calls) == 4

    def test_list_and_get(self):
        story = self.create_story()

        listed = self.client.get("/api/stories", headers=FREE).json()
        assert listed["count"] == 1
        assert self.client.get(f"/api/stories/{story['id']}", headers=FREE).status_code == 200

    def test_other_users_story_is_not_found(self):
        story = self.create_story()

        response = self.client.get(f"/api/stories/{story['id']}", headers=OTHER_USER)
        assert response.status_code == 404
        assert self.client.get("/api/stories/999", headers=FREE).status_code == 404


class TestIllustrationRoutes(RouteTestCase):
    def test_chapter_image_success(self):
        story = self.create_story()

        response = self.client.post(f"/api/stories/{story['id']}/chapters/0/image", headers=FREE)

        data = response.json()
        assert response.status_code == 200
        assert data["outcome"] == "success"
        assert data["image_url"].startswith("https://images.example.com/")
        assert data["invalidates"] == [f"/api/stories/{story['id']}"]

    def test_chapter_image_backup(self):
        story = self.create_story()
        self.gateway.image_errors[1] = ProviderConnectivityError("down", "openai")

        data = self.client.post(f"/api/stories/{story['id']}/chapters/1/image", headers=FREE).json()

        assert data["success"] is True
        assert data["outcome"] == "success_with_backup"
        assert data["is_backup"] is True
        assert data["image_url"] in DEFAULT_BACKUP_IMAGES

    def test_chapter_image_with_options(self):
        story = self.create_story()
        body = {"style": "watercolor", "mood": "calm", "image_prompt": "Um barco no rio"}

        self.client.post(f"/api/stories/{story['id']}/chapters/2/image", json=body, headers=FREE)

        params = self.gateway.image_calls[0]
        assert params.prompt == "Um barco no rio"
        assert params.style.value == "watercolor"

    def test_chapter_out_of_range(self):
        story = self.create_story()
        response = self.client.post(f"/api/stories/{story['id']}/chapters/9/image", headers=FREE)
        assert response.status_code == 404

    def test_bulk_with_one_failure(self):
        story = self.create_story()
        self.gateway.image_errors[2] = ProviderConnectivityError("down", "openai")

        data = self.client.post(f"/api/stories/{story['id']}/generateIllustrations", headers=FREE).json()

        assert data["total_count"] == 4
        assert data["success_count"] == 3
        assert data["backup_count"] == 1
        assert data["outcome"] == "success_with_backup"
        assert [r["chapter_index"] for r in data["results"]] == [0, 1, 2, 3]


class TestAudioRoutes(RouteTestCase):
    def test_free_plan_has_no_narration(self):
        story = self.create_story()

        response = self.client.post(f"/api/stories/{story['id']}/chapters/0/audio", headers=FREE)

        assert response.status_code == 403
        assert self.gateway.audio_calls == []

    def test_plus_plan_gets_audio(self):
        story = self.create_story(headers=PLUS)

        response = self.client.post(f"/api/stories/{story['id']}/chapters/0/audio", headers=PLUS)

        assert response.status_code == 200
        assert response.json()["audio_url"].startswith("data:audio/mpeg;base64,")
        stored = self.client.get(f"/api/stories/{story['id']}", headers=PLUS).json()["story"]
        assert stored["chapters"][0]["audio_url"]


class TestNarrationDisabled(RouteTestCase):
    settings_overrides = {"disable_tts": True}

    def test_disabled_tts_is_unavailable(self):
        story = self.create_story(headers=PLUS)

        response = self.client.post(f"/api/stories/{story['id']}/chapters/0/audio", headers=PLUS)

        assert response.status_code == 503
        assert response.json()["retryable"] is False


class TestReadingRoutes(RouteTestCase):
    def setup_method(self):
        super().setup_method()
        response = self.client.post("/api/child-profiles", json={"name": "Ana", "age_group": "6-8"},
                                    headers=FREE)
        self.child_id = response.json()["profile"]["id"]
        self.story = self.create_story()

    def test_record_progress(self):
        body = {"child_id": self.child_id, "story_id": self.story["id"], "chapter_index": 2, "duration": 3}

        data = self.client.post("/api/reading-sessions", json=body, headers=FREE).json()

        assert data["session"]["progress"] == 66
        assert data["session"]["completed"] is False
        assert data["invalidates"] == [f"/api/reading-sessions/child/{self.child_id}"]

    def test_last_chapter_completes(self):
        body = {"child_id": self.child_id, "story_id": self.story["id"], "chapter_index": 3}

        data = self.client.post("/api/reading-sessions", json=body, headers=FREE).json()

        assert data["session"]["progress"] == 100
        assert data["session"]["completed"] is True

    def test_update_and_list(self):
        body = {"child_id": self.child_id, "story_id": self.story["id"], "chapter_index": 0}
        session_id = self.client.post("/api/reading-sessions", json=body, headers=FREE).json()["session"]["id"]

        patched = self.client.patch(f"/api/reading-sessions/{session_id}", json={"completed": True},
                                    headers=FREE).json()
        assert patched["session"]["progress"] == 100

        listed = self.client.get(f"/api/reading-sessions/child/{self.child_id}", headers=FREE).json()
        assert listed["count"] == 1

    def test_chapter_index_beyond_story(self):
        body = {"child_id": self.child_id, "story_id": self.story["id"], "chapter_index": 4}
        assert self.client.post("/api/reading-sessions", json=body, headers=FREE).status_code == 400

    def test_other_parents_child(self):
        assert self.client.get(f"/api/reading-sessions/child/{self.child_id}",
                               headers=OTHER_USER).status_code == 404

    def test_unknown_session(self):
        response = self.client.patch("/api/reading-sessions/999", json={"progress": 10}, headers=FREE)
        assert response.status_code == 404


class TestCatalogAndSession(RouteTestCase):
    def test_characters(self):
        data = self.client.get("/api/characters").json()
        assert len(data["characters"]) == 7

    def test_themes_by_age_group(self):
        data = self.client.get("/api/themes", params={"age_group": "3-5"}).json()
        assert 3 not in [t["id"] for t in data["themes"]]

    def test_subscription_plans(self):
        data = self.client.get("/api/subscription-plans").json()
        assert [p["tier"] for p in data["plans"]] == ["free", "plus", "family"]

    def test_child_profiles(self):
        self.client.post("/api/child-profiles", json={"name": "Ana", "age_group": "3-5"}, headers=FREE)

        assert len(self.client.get("/api/child-profiles", headers=FREE).json()["profiles"]) == 1
        assert self.client.get("/api/child-profiles", headers=OTHER_USER).json()["profiles"] == []

    def test_session_invalidate(self):
        data = self.client.post("/api/session/invalidate", json={"reason": "upgrade"}, headers=FREE).json()
        assert "/api/stories" in data["invalidates"]

    def test_health(self):
        data = self.client.get("/api/health").json()
        assert data["status"] == "healthy"
        assert data["storage"] == "InMemoryStorage"
        assert data["providers"] == {"openai": True, "anthropic": False}
