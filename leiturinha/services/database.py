"""
SQL Server storage backend for Leiturinha.

Implements StorageService on top of pyodbc. Blocking driver calls run in a
thread pool so the event loop is never blocked.

Expected tables (created by migrations, not by this module):
    stories(id IDENTITY, user_id, child_profile_id, title, content, summary,
            reading_time, age_group, character_ids JSON, theme_id, text_only, created_at)
    chapters(story_id, chapter_index, title, content, image_prompt, image_url,
             image_is_backup, audio_url)
    reading_sessions(id IDENTITY, child_id, story_id, progress, completed,
                     duration, last_read_at, UNIQUE(child_id, story_id))
    child_profiles(id IDENTITY, parent_id, name, age_group, avatar, created_at)
    characters(id, name, description, personality, image_url, is_premium, age_groups JSON)
    themes(id, name, description, age_groups JSON, is_premium)
    subscription_plans(id, tier, name, price_cents, description, features JSON)
"""

import asyncio
import json
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import pyodbc

from leiturinha.models.models import (
    AgeGroup,
    Chapter,
    Character,
    ReadingSession,
    Story,
    Theme,
)
from leiturinha.models.profiles import ChildProfile, PlanTier, SubscriptionPlan
from leiturinha.services.errors import ChapterNotFoundError, StorageError
from leiturinha.services.storage import StorageService


class DatabaseService(StorageService):
    """SQL Server storage via pyodbc."""

    def __init__(
        self,
        server: str,
        database: str,
        username: str,
        password: str,
        driver: str = "ODBC Driver 18 for SQL Server",
        logger=None
    ):
        """
        Initialize database service.

        Args:
            server: SQL server host (e.g., leiturinha-db.database.windows.net)
            database: Database name
            username: SQL username
            password: SQL password
            driver: Installed ODBC driver name
            logger: Optional LeiturinhaLogger for storage debug logs
        """
        self.connection_string = (
            f"Driver={{{driver}}};"
            f"Server=tcp:{server},1433;"
            f"Database={database};"
            f"Uid={username};"
            f"Pwd={password};"
            f"Encrypt=yes;TrustServerCertificate=no;Connection Timeout=30;"
        )
        self.logger = logger
        self._executor = ThreadPoolExecutor(max_workers=5)
        self._initialized = False

    def initialize(self):
        """Verify connectivity once at startup."""
        if self._initialized:
            return

        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT 1")
                cursor.fetchone()
            self._initialized = True
            print("   SQL Server connection verified")
        except pyodbc.Error as e:
            print(f"   Warning: SQL Server connection failed: {e}")
            raise StorageError(f"SQL Server connection failed: {e}") from e

    def close(self):
        self._executor.shutdown(wait=False)

    def _get_connection(self) -> pyodbc.Connection:
        return pyodbc.connect(self.connection_string)

    async def _run_async(self, func, *args, **kwargs):
        """Run a sync function in the thread pool."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                self._executor,
                lambda: func(*args, **kwargs)
            )
        except pyodbc.Error as e:
            raise StorageError(str(e)) from e

    def _log(self, operation: str, path: str, summary: str, start: float):
        if self.logger:
            self.logger.storage_operation(operation, path, summary, duration=time.time() - start)

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _row_to_chapter(row) -> Chapter:
        return Chapter(
            title=row[0],
            content=row[1],
            image_prompt=row[2],
            image_url=row[3],
            image_is_backup=bool(row[4]),
            audio_url=row[5],
        )

    @staticmethod
    def _row_to_session(row) -> ReadingSession:
        return ReadingSession(
            id=row[0],
            child_id=row[1],
            story_id=row[2],
            progress=row[3],
            completed=bool(row[4]),
            duration=row[5],
            last_read_at=row[6],
        )

    _STORY_COLUMNS = (
        "id, user_id, child_profile_id, title, content, summary, reading_time, "
        "age_group, character_ids, theme_id, text_only, created_at"
    )
    _SESSION_COLUMNS = "id, child_id, story_id, progress, completed, duration, last_read_at"

    def _load_chapters(self, cursor, story_id: int) -> List[Chapter]:
        cursor.execute("""
            SELECT title, content, image_prompt, image_url, image_is_backup, audio_url
            FROM chapters WHERE story_id = ?
            ORDER BY chapter_index
        """, (story_id,))
        return [self._row_to_chapter(row) for row in cursor.fetchall()]

    def _row_to_story(self, cursor, row) -> Story:
        return Story(
            id=row[0],
            user_id=row[1],
            child_profile_id=row[2],
            title=row[3],
            content=row[4],
            summary=row[5],
            reading_time=row[6],
            age_group=AgeGroup(row[7]),
            character_ids=json.loads(row[8]) if row[8] else [],
            theme_id=row[9],
            text_only=bool(row[10]),
            created_at=row[11],
            chapters=self._load_chapters(cursor, row[0]),
        )

    # =========================================================================
    # Stories
    # =========================================================================

    def _create_story_sync(self, story: Story) -> Story:
        start = time.time()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO stories
                (user_id, child_profile_id, title, content, summary, reading_time,
                 age_group, character_ids, theme_id, text_only, created_at)
                OUTPUT INSERTED.id
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                story.user_id,
                story.child_profile_id,
                story.title,
                story.content,
                story.summary,
                story.reading_time,
                story.age_group.value,
                json.dumps(story.character_ids),
                story.theme_id,
                story.text_only,
                story.created_at,
            ))
            story_id = int(cursor.fetchone()[0])

            for index, chapter in enumerate(story.chapters):
                cursor.execute("""
                    INSERT INTO chapters
                    (story_id, chapter_index, title, content, image_prompt,
                     image_url, image_is_backup, audio_url)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    story_id,
                    index,
                    chapter.title,
                    chapter.content,
                    chapter.image_prompt,
                    chapter.image_url,
                    chapter.image_is_backup,
                    chapter.audio_url,
                ))

            conn.commit()

        stored = story.model_copy(deep=True)
        stored.id = story_id
        self._log("create", f"stories/{story_id}", stored.title, start)
        return stored

    async def create_story(self, story: Story) -> Story:
        return await self._run_async(self._create_story_sync, story)

    def _get_story_sync(self, story_id: int) -> Optional[Story]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT {self._STORY_COLUMNS} FROM stories WHERE id = ?", (story_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return self._row_to_story(cursor, row)

    async def get_story(self, story_id: int) -> Optional[Story]:
        return await self._run_async(self._get_story_sync, story_id)

    def _list_stories_sync(self, user_id: int) -> List[Story]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {self._STORY_COLUMNS} FROM stories
                WHERE user_id = ? ORDER BY created_at DESC
            """, (user_id,))
            rows = cursor.fetchall()
            return [self._row_to_story(cursor, row) for row in rows]

    async def list_stories(self, user_id: int) -> List[Story]:
        return await self._run_async(self._list_stories_sync, user_id)

    def _update_chapter_sync(self, story_id: int, chapter_index: int, assignments: str, values: tuple):
        start = time.time()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE chapters SET {assignments} WHERE story_id = ? AND chapter_index = ?",
                values + (story_id, chapter_index)
            )
            if cursor.rowcount == 0:
                raise ChapterNotFoundError(chapter_index)
            conn.commit()
        self._log("update", f"stories/{story_id}/chapters/{chapter_index}", assignments, start)

    async def update_chapter_image(self, story_id: int, chapter_index: int,
                                   image_url: str, is_backup: bool = False) -> None:
        await self._run_async(
            self._update_chapter_sync, story_id, chapter_index,
            "image_url = ?, image_is_backup = ?", (image_url, is_backup)
        )

    async def update_chapter_audio(self, story_id: int, chapter_index: int, audio_url: str) -> None:
        await self._run_async(
            self._update_chapter_sync, story_id, chapter_index,
            "audio_url = ?", (audio_url,)
        )

    # =========================================================================
    # Reading sessions
    # =========================================================================

    def _find_reading_session_sync(self, child_id: int, story_id: int) -> Optional[ReadingSession]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {self._SESSION_COLUMNS} FROM reading_sessions
                WHERE child_id = ? AND story_id = ?
            """, (child_id, story_id))
            row = cursor.fetchone()
            return self._row_to_session(row) if row else None

    async def find_reading_session(self, child_id: int, story_id: int) -> Optional[ReadingSession]:
        return await self._run_async(self._find_reading_session_sync, child_id, story_id)

    def _get_reading_session_sync(self, session_id: int) -> Optional[ReadingSession]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {self._SESSION_COLUMNS} FROM reading_sessions WHERE id = ?",
                (session_id,)
            )
            row = cursor.fetchone()
            return self._row_to_session(row) if row else None

    async def get_reading_session(self, session_id: int) -> Optional[ReadingSession]:
        return await self._run_async(self._get_reading_session_sync, session_id)

    def _upsert_reading_session_sync(self, session: ReadingSession) -> ReadingSession:
        start = time.time()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            # HOLDLOCK keeps two concurrent first reads from inserting twice
            cursor.execute("""
                MERGE reading_sessions WITH (HOLDLOCK) AS target
                USING (SELECT ? AS child_id, ? AS story_id) AS source
                ON target.child_id = source.child_id AND target.story_id = source.story_id
                WHEN MATCHED THEN
                    UPDATE SET progress = ?, completed = ?, duration = ?, last_read_at = ?
                WHEN NOT MATCHED THEN
                    INSERT (child_id, story_id, progress, completed, duration, last_read_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                OUTPUT INSERTED.id;
            """, (
                session.child_id, session.story_id,
                session.progress, session.completed, session.duration, session.last_read_at,
                session.child_id, session.story_id,
                session.progress, session.completed, session.duration, session.last_read_at,
            ))
            session_id = int(cursor.fetchone()[0])
            conn.commit()

        stored = session.model_copy(deep=True)
        stored.id = session_id
        self._log("upsert", f"reading_sessions/{session_id}", f"progress={stored.progress}", start)
        return stored

    async def upsert_reading_session(self, session: ReadingSession) -> ReadingSession:
        return await self._run_async(self._upsert_reading_session_sync, session)

    def _list_reading_sessions_sync(self, child_id: int) -> List[ReadingSession]:
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {self._SESSION_COLUMNS} FROM reading_sessions
                WHERE child_id = ? ORDER BY last_read_at DESC
            """, (child_id,))
            return [self._row_to_session(row) for row in cursor.fetchall()]

    async def list_reading_sessions(self, child_id: int) -> List[ReadingSession]:
        return await self._run_async(self._list_reading_sessions_sync, child_id)

    # =========================================================================
    # Child profiles
    # =========================================================================

    def _create_child_profile_sync(self, profile: ChildProfile) -> ChildProfile:
        start = time.time()
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO child_profiles (parent_id, name, age_group, avatar, created_at)
                OUTPUT INSERTED.id
                VALUES (?, ?, ?, ?, ?)
            """, (
                profile.parent_id,
                profile.name,
                profile.age_group.value,
                profile.avatar,
                profile.created_at,
            ))
            profile_id = int(cursor.fetchone()[0])
            conn.commit()

        stored = profile.model_copy(deep=True)
        stored.id = profile_id
        self._log("create", f"child_profiles/{profile_id}", stored.name, start)
        return stored

    async def create_child_profile(self, profile: ChildProfile) -> ChildProfile:
        return await self._run_async(self._create_child_profile_sync, profile)

    @staticmethod
    def _row_to_profile(row) -> ChildProfile:
        return ChildProfile(
            id=row[0],
            parent_id=row[1],
            name=row[2],
            age_group=AgeGroup(row[3]),
            avatar=row[4],
            created_at=row[5],
        )

    async def get_child_profile(self, child_id: int) -> Optional[ChildProfile]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, parent_id, name, age_group, avatar, created_at
                    FROM child_profiles WHERE id = ?
                """, (child_id,))
                row = cursor.fetchone()
                return self._row_to_profile(row) if row else None
        return await self._run_async(_get)

    async def list_child_profiles(self, parent_id: int) -> List[ChildProfile]:
        def _list():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, parent_id, name, age_group, avatar, created_at
                    FROM child_profiles WHERE parent_id = ? ORDER BY id
                """, (parent_id,))
                return [self._row_to_profile(row) for row in cursor.fetchall()]
        return await self._run_async(_list)

    # =========================================================================
    # Catalog
    # =========================================================================

    @staticmethod
    def _row_to_character(row) -> Character:
        character = Character(
            id=row[0],
            name=row[1],
            description=row[2],
            personality=row[3],
            image_url=row[4],
            is_premium=bool(row[5]),
        )
        if row[6]:
            character.age_groups = [AgeGroup(g) for g in json.loads(row[6])]
        return character

    @staticmethod
    def _row_to_theme(row) -> Theme:
        return Theme(
            id=row[0],
            name=row[1],
            description=row[2],
            age_groups=[AgeGroup(g) for g in json.loads(row[3])] if row[3] else [],
            is_premium=bool(row[4]),
        )

    async def get_characters(self) -> List[Character]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, name, description, personality, image_url, is_premium, age_groups
                    FROM characters ORDER BY id
                """)
                return [self._row_to_character(row) for row in cursor.fetchall()]
        return await self._run_async(_get)

    async def get_character(self, character_id: int) -> Optional[Character]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, name, description, personality, image_url, is_premium, age_groups
                    FROM characters WHERE id = ?
                """, (character_id,))
                row = cursor.fetchone()
                return self._row_to_character(row) if row else None
        return await self._run_async(_get)

    async def get_themes(self, age_group: Optional[AgeGroup] = None) -> List[Theme]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, name, description, age_groups, is_premium
                    FROM themes ORDER BY id
                """)
                return [self._row_to_theme(row) for row in cursor.fetchall()]
        themes = await self._run_async(_get)
        if age_group is not None:
            themes = [t for t in themes if t.allows(age_group)]
        return themes

    async def get_theme(self, theme_id: int) -> Optional[Theme]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, name, description, age_groups, is_premium
                    FROM themes WHERE id = ?
                """, (theme_id,))
                row = cursor.fetchone()
                return self._row_to_theme(row) if row else None
        return await self._run_async(_get)

    async def get_subscription_plans(self) -> List[SubscriptionPlan]:
        def _get():
            with self._get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    SELECT id, tier, name, price_cents, description, features
                    FROM subscription_plans ORDER BY price_cents
                """)
                return [
                    SubscriptionPlan(
                        id=row[0],
                        tier=PlanTier(row[1]),
                        name=row[2],
                        price_cents=row[3],
                        description=row[4],
                        features=json.loads(row[5]) if row[5] else [],
                    )
                    for row in cursor.fetchall()
                ]
        return await self._run_async(_get)
