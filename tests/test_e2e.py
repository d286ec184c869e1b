"""
End-to-end flow without network access:

    wizard -> story assembly -> lazy illustration (one chapter fails)
    -> narration -> reading progress

Run with: python -m pytest tests/test_e2e.py -v
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.config.settings import DEFAULT_BACKUP_IMAGES, Settings
from leiturinha.models.models import AgeGroup, OperationOutcome
from leiturinha.models.profiles import ChildProfile, PlanTier
from leiturinha.services import build_services
from leiturinha.services.errors import ProviderConnectivityError
from leiturinha.services.events import (
    EVENT_CHAPTER_IMAGE_READY,
    EVENT_ILLUSTRATIONS_COMPLETE,
    EVENT_SESSION_INVALIDATED,
    EVENT_STORY_CREATED,
    EventEmitter,
)
from leiturinha.services.rate_limiter import ProviderConcurrencyLimiter
from leiturinha.services.storage import InMemoryStorage
from leiturinha.services.wizard import StoryWizard, WizardStep

from fakes import FakeGateway


class TestStoryJourney:
    def setup_method(self):
        self.gateway = FakeGateway()
        self.events = EventEmitter()
        self.seen = []
        for event_type in (EVENT_STORY_CREATED, EVENT_CHAPTER_IMAGE_READY,
                           EVENT_ILLUSTRATIONS_COMPLETE, EVENT_SESSION_INVALIDATED):
            self.events.on(event_type, lambda event: self.seen.append(event.event_type))
        self.services = build_services(
            Settings(backup_images=DEFAULT_BACKUP_IMAGES),
            InMemoryStorage(),
            gateway=self.gateway,
            events=self.events,
            limiter=ProviderConcurrencyLimiter(max_concurrent=2),
        )
        self.session = self.services.sessions.build_session_context(1, PlanTier.PLUS)

    def test_text_only_story_then_illustrations_then_reading(self):
        async def journey():
            services = self.services
            child = await services.storage.create_child_profile(
                ChildProfile(id=0, parent_id=1, name="Ana", age_group=AgeGroup.EARLY_READER)
            )

            wizard = StoryWizard(self.session, lambda selection: services.assembly.assemble(selection, self.session))
            wizard.select_age_group(AgeGroup.EARLY_READER)
            wizard.next()
            wizard.toggle_character(1)
            wizard.toggle_character(5)
            wizard.next()
            wizard.select_theme(2)
            wizard.next()
            outcome = await wizard.submit()
            assert outcome.success
            assert wizard.step == WizardStep.DONE

            story = await services.storage.get_story(outcome.story_id)
            assert story.text_only
            assert self.gateway.image_calls == []

            self.gateway.image_errors[1] = ProviderConnectivityError("down", "openai")
            bulk = await services.illustrations.generate_all_illustrations(story)

            narration = await services.narration.generate_chapter_audio(story, 0, self.session)

            first = await services.reading.record_progress(child.id, story.id, 0, len(story.chapters))
            last = await services.reading.record_progress(child.id, story.id, len(story.chapters) - 1,
                                                          len(story.chapters), duration_minutes=5)
            stored = await services.storage.get_story(story.id)
            await services.sessions.invalidate(1, "logout")
            return bulk, narration, first, last, stored

        bulk, narration, first, last, stored = asyncio.run(journey())

        assert bulk.total_count == 4
        assert bulk.success_count == 3
        assert bulk.backup_count == 1
        assert bulk.results[1].outcome == OperationOutcome.SUCCESS_WITH_BACKUP
        assert stored.chapters[1].image_is_backup
        assert all(c.image_url for c in stored.chapters)

        assert narration.startswith("data:audio/mpeg;base64,")
        assert stored.chapters[0].audio_url == narration

        assert first.progress == 0
        assert last.progress == 100 and last.completed
        assert last.id == first.id

        assert self.seen[0] == EVENT_STORY_CREATED
        assert self.seen.count(EVENT_CHAPTER_IMAGE_READY) == 4
        assert EVENT_ILLUSTRATIONS_COMPLETE in self.seen
        assert self.seen[-1] == EVENT_SESSION_INVALIDATED

    def test_session_invalidation_emits_event_per_call(self):
        sessions = self.services.sessions

        first = asyncio.run(sessions.invalidate(1, "upgrade"))
        second = asyncio.run(sessions.invalidate(1))

        assert self.seen == [EVENT_SESSION_INVALIDATED, EVENT_SESSION_INVALIDATED]
        assert first.data["reason"] == "upgrade"
        assert "/api/stories" in second.invalidates

    def test_unknown_tier_falls_back_to_free(self):
        session = self.services.sessions.build_session_context(3, "gold")
        assert session.tier == PlanTier.FREE
