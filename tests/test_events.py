"""
Unit tests for the story event emitter.

Run with: python -m pytest tests/test_events.py -v
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from leiturinha.services.events import (
    EVENT_CHAPTER_IMAGE_READY,
    EVENT_STORY_CREATED,
    EventEmitter,
)


class TestEventEmitter:
    def setup_method(self):
        self.events = EventEmitter()

    def test_sync_and_async_listeners(self):
        received = []

        async def async_listener(event):
            received.append(("async", event.story_id))

        self.events.on(EVENT_STORY_CREATED, lambda event: received.append(("sync", event.story_id)))
        self.events.on(EVENT_STORY_CREATED, async_listener)

        asyncio.run(self.events.emit_story_created(3, 1, "Título", 4))

        assert received == [("sync", 3), ("async", 3)]

    def test_broken_listener_does_not_fail_emit(self):
        def broken(event):
            raise RuntimeError("listener bug")

        self.events.on(EVENT_STORY_CREATED, broken)
        event = asyncio.run(self.events.emit_story_created(3, 1, "Título", 4))

        assert event.invalidates == ["/api/stories/3", "/api/stories"]

    def test_off_removes_listener(self):
        received = []
        listener = received.append
        self.events.on(EVENT_STORY_CREATED, listener)
        self.events.off(EVENT_STORY_CREATED, listener)

        asyncio.run(self.events.emit_story_created(3, 1, "Título", 4))

        assert received == []

    def test_story_queue_receives_events(self):
        async def run():
            queue = self.events.create_story_queue(9)
            await self.events.emit_chapter_image_ready(9, 2, "https://img/2.png", False)
            return await queue.get()

        event = asyncio.run(run())

        assert event.event_type == EVENT_CHAPTER_IMAGE_READY
        assert event.to_dict()["data"]["chapter_index"] == 2
        assert event.to_dict()["invalidates"] == ["/api/stories/9"]

    def test_removed_queue_gets_nothing(self):
        async def run():
            queue = self.events.create_story_queue(9)
            self.events.remove_story_queue(9)
            await self.events.emit_chapter_audio_ready(9, 0)
            return queue.qsize()

        assert asyncio.run(run()) == 0
