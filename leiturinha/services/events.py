"""
Event System for Story Updates

Every mutation emits an event naming the reads it invalidates, so clients
know exactly which resources to refetch (e.g. a new chapter image
invalidates `/api/stories/{id}`).
"""

from typing import Dict, Callable, Any, List, Optional
from asyncio import Queue
import asyncio
import logging
from datetime import datetime

logger = logging.getLogger(__name__)


# ==================== Event Type Constants ====================
EVENT_STORY_CREATED = "story_created"
EVENT_CHAPTER_IMAGE_READY = "chapter_image_ready"
EVENT_ILLUSTRATIONS_COMPLETE = "illustrations_complete"
EVENT_CHAPTER_AUDIO_READY = "chapter_audio_ready"
EVENT_READING_PROGRESS = "reading_progress"
EVENT_SESSION_INVALIDATED = "session_invalidated"


def story_reads(story_id: Any) -> List[str]:
    """Read paths that change whenever a story or its chapters change"""
    return [f"/api/stories/{story_id}", "/api/stories"]


def reading_reads(child_id: Any) -> List[str]:
    return [f"/api/reading-sessions/child/{child_id}"]


class StoryEvent:
    """Represents a story event"""
    def __init__(self, event_type: str, story_id: Any, data: Dict[str, Any],
                 invalidates: Optional[List[str]] = None):
        self.event_type = event_type
        self.story_id = story_id
        self.data = data
        self.invalidates = list(invalidates or [])
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type,
            "story_id": self.story_id,
            "data": self.data,
            "invalidates": self.invalidates,
            "timestamp": self.timestamp.isoformat()
        }


class EventEmitter:
    """
    Event emitter for story mutations.

    - story_created: Story assembled and stored
    - chapter_image_ready: Chapter illustration (or backup) stored
    - illustrations_complete: Bulk illustration run finished
    - chapter_audio_ready: Chapter narration stored
    - reading_progress: Reading session updated
    - session_invalidated: User session must be reloaded
    """

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._story_queues: Dict[Any, Queue] = {}  # story_id -> event queue

    def on(self, event_type: str, callback: Callable):
        """Register event listener"""
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def off(self, event_type: str, callback: Callable):
        """Remove event listener"""
        if event_type in self._listeners and callback in self._listeners[event_type]:
            self._listeners[event_type].remove(callback)

    async def emit(self, event_type: str, story_id: Any, data: Dict[str, Any],
                   invalidates: Optional[List[str]] = None) -> StoryEvent:
        """Emit event to all registered listeners"""
        event = StoryEvent(event_type, story_id, data, invalidates)

        for callback in list(self._listeners.get(event_type, [])):
            try:
                if asyncio.iscoroutinefunction(callback):
                    await callback(event)
                else:
                    callback(event)
            except Exception as e:
                # A broken listener must not fail the mutation that emitted
                logger.error(f"Error in event listener for {event_type}: {e}", exc_info=True)

        if story_id in self._story_queues:
            await self._story_queues[story_id].put(event)

        return event

    def create_story_queue(self, story_id: Any) -> Queue:
        """Create event queue for a specific story"""
        queue = Queue()
        self._story_queues[story_id] = queue
        return queue

    def remove_story_queue(self, story_id: Any):
        if story_id in self._story_queues:
            del self._story_queues[story_id]

    # ==================== Event Helpers ====================

    async def emit_story_created(self, story_id: Any, user_id: Any, title: str,
                                 chapter_count: int) -> StoryEvent:
        return await self.emit(EVENT_STORY_CREATED, story_id, {
            "user_id": user_id,
            "title": title,
            "chapter_count": chapter_count,
        }, invalidates=story_reads(story_id))

    async def emit_chapter_image_ready(self, story_id: Any, chapter_index: int,
                                       image_url: str, is_backup: bool) -> StoryEvent:
        return await self.emit(EVENT_CHAPTER_IMAGE_READY, story_id, {
            "chapter_index": chapter_index,
            "image_url": image_url,
            "is_backup": is_backup,
        }, invalidates=[f"/api/stories/{story_id}"])

    async def emit_illustrations_complete(self, story_id: Any, success_count: int,
                                          backup_count: int, failure_count: int) -> StoryEvent:
        return await self.emit(EVENT_ILLUSTRATIONS_COMPLETE, story_id, {
            "success_count": success_count,
            "backup_count": backup_count,
            "failure_count": failure_count,
        }, invalidates=story_reads(story_id))

    async def emit_chapter_audio_ready(self, story_id: Any, chapter_index: int) -> StoryEvent:
        return await self.emit(EVENT_CHAPTER_AUDIO_READY, story_id, {
            "chapter_index": chapter_index,
        }, invalidates=[f"/api/stories/{story_id}"])

    async def emit_reading_progress(self, story_id: Any, child_id: Any, progress: int,
                                    completed: bool) -> StoryEvent:
        return await self.emit(EVENT_READING_PROGRESS, story_id, {
            "child_id": child_id,
            "progress": progress,
            "completed": completed,
        }, invalidates=reading_reads(child_id))

    async def emit_session_invalidated(self, user_id: Any, reason: str = "") -> StoryEvent:
        # Everything user-scoped is stale after a session change
        return await self.emit(EVENT_SESSION_INVALIDATED, None, {
            "user_id": user_id,
            "reason": reason,
        }, invalidates=["/api/stories", "/api/subscription-plans", "/api/characters", "/api/themes"])


# Global event emitter instance
story_events = EventEmitter()
