"""
Unit tests for the SQL Server storage backend with a mocked pyodbc connection.

Run with: python -m pytest tests/test_database.py -v
"""

import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

pyodbc = pytest.importorskip("pyodbc")

from leiturinha.models.models import AgeGroup, ReadingSession
from leiturinha.services.database import DatabaseService
from leiturinha.services.errors import ChapterNotFoundError, StorageError

from fakes import make_story


def make_connection():
    connection = MagicMock()
    connection.__enter__.return_value = connection
    cursor = MagicMock()
    connection.cursor.return_value = cursor
    return connection, cursor


class TestDatabaseService:
    def setup_method(self):
        self.db = DatabaseService(server="db.example.com", database="leiturinha",
                                  username="app", password="secret")
        self.connection, self.cursor = make_connection()
        self.patcher = patch("leiturinha.services.database.pyodbc.connect", return_value=self.connection)
        self.connect = self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()
        self.db.close()

    def test_connection_string(self):
        assert "Server=tcp:db.example.com,1433;" in self.db.connection_string
        assert "Driver={ODBC Driver 18 for SQL Server};" in self.db.connection_string

    def test_initialize_verifies_once(self):
        self.db.initialize()
        self.db.initialize()

        self.cursor.execute.assert_called_once_with("SELECT 1")

    def test_initialize_failure_is_storage_error(self):
        self.connect.side_effect = pyodbc.Error("08001", "login timeout")

        with pytest.raises(StorageError):
            self.db.initialize()

    def test_query_failure_is_storage_error(self):
        self.cursor.execute.side_effect = pyodbc.Error("08S01", "link failure")

        with pytest.raises(StorageError):
            asyncio.run(self.db.get_story(1))

    def test_create_story_inserts_chapters(self):
        self.cursor.fetchone.return_value = (42,)

        stored = asyncio.run(self.db.create_story(make_story(chapter_count=2)))

        assert stored.id == 42
        # One story insert plus one per chapter
        assert self.cursor.execute.call_count == 3
        chapter_values = self.cursor.execute.call_args_list[2][0][1]
        assert chapter_values[:2] == (42, 1)
        self.connection.commit.assert_called_once()

    def test_get_story_maps_rows(self):
        created = datetime(2024, 5, 1, 10, 0)
        self.cursor.fetchone.return_value = (
            7, 1, None, "Uma Aventura", "Texto", "Resumo", 3,
            "6-8", json.dumps([1, 2]), 1, True, created,
        )
        self.cursor.fetchall.return_value = [
            ("Capítulo 1", "Era uma vez", "Uma floresta", "https://img/1.png", False, None),
            ("Capítulo 2", "Fim", "Um rio", None, False, None),
        ]

        story = asyncio.run(self.db.get_story(7))

        assert story.id == 7
        assert story.age_group == AgeGroup.EARLY_READER
        assert story.character_ids == [1, 2]
        assert [c.title for c in story.chapters] == ["Capítulo 1", "Capítulo 2"]
        assert story.chapters[0].image_url == "https://img/1.png"

    def test_missing_story(self):
        self.cursor.fetchone.return_value = None
        assert asyncio.run(self.db.get_story(99)) is None

    def test_update_missing_chapter(self):
        self.cursor.rowcount = 0

        with pytest.raises(ChapterNotFoundError):
            asyncio.run(self.db.update_chapter_image(7, 9, "https://img/9.png"))
        self.connection.commit.assert_not_called()

    def test_upsert_reading_session_returns_id(self):
        self.cursor.fetchone.return_value = (5,)
        session = ReadingSession(id=0, child_id=7, story_id=42, progress=75, completed=False,
                                 duration=4, last_read_at=datetime(2024, 5, 1, 10, 0))

        stored = asyncio.run(self.db.upsert_reading_session(session))

        assert stored.id == 5
        sql = self.cursor.execute.call_args[0][0]
        assert "MERGE reading_sessions" in sql
