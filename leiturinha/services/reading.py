"""
Reading Progress Tracker

Records how far a child has read a story, independently of illustration
state. One ReadingSession per (child, story); progress never goes down.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from leiturinha.models.models import ReadingSession
from leiturinha.services.errors import ReadingSessionNotFoundError
from leiturinha.services.events import EventEmitter, story_events
from leiturinha.services.logger import get_logger
from leiturinha.services.storage import StorageService

logger = logging.getLogger(__name__)


def compute_progress(chapter_index: int, total_chapters: int) -> int:
    """
    Percentage for having viewed chapter_index of total_chapters.

    A single-chapter story is 100% as soon as it is viewed.

    Raises:
        ValueError: If total_chapters < 1 or chapter_index is out of range
    """
    if total_chapters < 1:
        raise ValueError(f"total_chapters must be at least 1, got {total_chapters}")
    if chapter_index < 0 or chapter_index >= total_chapters:
        raise ValueError(f"chapter_index {chapter_index} out of range for {total_chapters} chapters")
    if total_chapters == 1:
        return 100
    return (chapter_index * 100) // (total_chapters - 1)


class ReadingProgressTracker:
    def __init__(self, storage: StorageService, events: Optional[EventEmitter] = None):
        self.storage = storage
        self.events = events or story_events
        # (child_id, story_id) -> [lock, callers holding or waiting]
        self._locks: Dict[Tuple[int, int], list] = {}

    @asynccontextmanager
    async def _pair_lock(self, child_id: int, story_id: int):
        """Serialize writes for one pair; the lock is dropped once nobody uses it"""
        key = (child_id, story_id)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def active_lock_count(self) -> int:
        return len(self._locks)

    async def _save(self, session: ReadingSession, progress: int, duration_minutes: int) -> ReadingSession:
        session.progress = max(session.progress, progress)
        session.completed = session.progress == 100
        session.duration += duration_minutes
        session.last_read_at = datetime.now(timezone.utc)
        saved = await self.storage.upsert_reading_session(session)

        get_logger().reading_progress(saved.child_id, saved.story_id, saved.progress, saved.completed)
        await self.events.emit_reading_progress(
            saved.story_id, saved.child_id, saved.progress, saved.completed
        )
        return saved

    async def record_progress(
        self,
        child_id: int,
        story_id: int,
        chapter_index: int,
        total_chapters: int,
        duration_minutes: int = 0,
    ) -> ReadingSession:
        """
        Record that a child viewed a chapter.

        Creates the session on first view; later views only raise progress.

        Raises:
            ValueError: On an invalid chapter index, total or negative duration
        """
        if duration_minutes < 0:
            raise ValueError("duration_minutes cannot be negative")
        progress = compute_progress(chapter_index, total_chapters)

        async with self._pair_lock(child_id, story_id):
            session = await self.storage.find_reading_session(child_id, story_id)
            if session is None:
                session = ReadingSession(child_id=child_id, story_id=story_id)
            return await self._save(session, progress, duration_minutes)

    async def update_session(
        self,
        session_id: int,
        progress: Optional[int] = None,
        duration_minutes: int = 0,
        completed: Optional[bool] = None,
    ) -> ReadingSession:
        """
        Update an existing session by id.

        completed=True is shorthand for progress 100.

        Raises:
            ReadingSessionNotFoundError: Unknown session id
            ValueError: Progress outside 0-100 or negative duration
        """
        if progress is not None and not 0 <= progress <= 100:
            raise ValueError(f"progress must be between 0 and 100, got {progress}")
        if duration_minutes < 0:
            raise ValueError("duration_minutes cannot be negative")
        if completed:
            progress = 100

        existing = await self.storage.get_reading_session(session_id)
        if existing is None:
            raise ReadingSessionNotFoundError(session_id)

        async with self._pair_lock(existing.child_id, existing.story_id):
            session = await self.storage.get_reading_session(session_id)
            return await self._save(session, progress or 0, duration_minutes)

    async def list_sessions(self, child_id: int) -> List[ReadingSession]:
        """Sessions for a child, most recently read first"""
        return await self.storage.list_reading_sessions(child_id)
