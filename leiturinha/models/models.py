"""
Pydantic data models for Leiturinha

Story, chapter and illustration models shared by the services and the API.

LIMITS (user-facing)
====================
| Field                        | Min | Max | Model            |
|------------------------------|-----|-----|------------------|
| WizardSelection.character_ids| 1   | 3   | WizardSelection  |
| WizardSelection.child_name   | 1   | 50  | WizardSelection  |
| ReadingSession.progress      | 0   | 100 | ReadingSession   |
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum

from leiturinha.config.limits import (
    MAX_CHARACTERS_PER_STORY,
    CHILD_NAME_MAX_LENGTH,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class AgeGroup(str, Enum):
    TODDLER = "3-5"
    EARLY_READER = "6-8"
    MIDDLE_GRADE = "9-12"


class IllustrationStyle(str, Enum):
    CARTOON = "cartoon"
    WATERCOLOR = "watercolor"
    PENCIL = "pencil"
    DIGITAL = "digital"


class IllustrationMood(str, Enum):
    HAPPY = "happy"
    ADVENTURE = "adventure"
    CALM = "calm"
    EXCITING = "exciting"


class OperationOutcome(str, Enum):
    """The only outcomes a client has to branch on."""
    SUCCESS = "success"
    SUCCESS_WITH_BACKUP = "success_with_backup"
    FAILURE = "failure"


# ============================================================================
# Catalog
# ============================================================================

ALL_AGE_GROUPS = [AgeGroup.TODDLER, AgeGroup.EARLY_READER, AgeGroup.MIDDLE_GRADE]


class Character(BaseModel):
    id: int
    name: str
    description: str
    personality: str
    image_url: str
    is_premium: bool = False
    age_groups: List[AgeGroup] = Field(default_factory=lambda: list(ALL_AGE_GROUPS))


class Theme(BaseModel):
    id: int
    name: str
    description: str
    age_groups: List[AgeGroup] = Field(default_factory=list)
    is_premium: bool = False

    def allows(self, age_group: AgeGroup) -> bool:
        return age_group in self.age_groups


# ============================================================================
# Wizard Selection
# ============================================================================

class WizardSelection(BaseModel):
    """
    Selections collected by the story wizard.

    Transient and client-owned: lives for one wizard session. Only submittable
    when an age group, at least one character and a theme are all set.
    """
    age_group: Optional[AgeGroup] = None
    character_ids: List[int] = Field(default_factory=list)
    theme_id: int = 0  # 0 = not selected yet
    child_name: Optional[str] = Field(default=None, max_length=CHILD_NAME_MAX_LENGTH)
    text_only: bool = True  # Illustrations are opt-in
    child_profile_id: Optional[int] = None

    @field_validator("character_ids")
    @classmethod
    def validate_character_ids(cls, value: List[int]) -> List[int]:
        if len(set(value)) != len(value):
            raise ValueError("character_ids must not contain duplicates")
        if len(value) > MAX_CHARACTERS_PER_STORY:
            raise ValueError(f"at most {MAX_CHARACTERS_PER_STORY} characters per story")
        return value

    @field_validator("child_name")
    @classmethod
    def strip_child_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @property
    def is_submittable(self) -> bool:
        return (
            self.age_group is not None
            and len(self.character_ids) > 0
            and self.theme_id != 0
        )


# ============================================================================
# Story & Chapters
# ============================================================================

class Chapter(BaseModel):
    title: str
    content: str
    image_prompt: str  # Fixed at assembly time
    image_url: Optional[str] = None
    image_is_backup: bool = False
    audio_url: Optional[str] = None


class Story(BaseModel):
    id: Optional[int] = None  # Assigned by storage
    user_id: Optional[int] = None
    child_profile_id: Optional[int] = None
    title: str
    content: str
    summary: str
    reading_time: int = Field(default=1, ge=1)  # minutes
    age_group: AgeGroup
    character_ids: List[int] = Field(default_factory=list)
    theme_id: int
    text_only: bool = True
    chapters: List[Chapter] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Illustration Results
# ============================================================================

class IllustrationOptions(BaseModel):
    style: IllustrationStyle = IllustrationStyle.CARTOON
    mood: IllustrationMood = IllustrationMood.ADVENTURE
    age_group: Optional[AgeGroup] = None  # None = the story's age group


class IllustrationResult(BaseModel):
    """
    Result of one orchestrator call for one chapter.

    success=True, is_backup=True means a fallback asset is shown (degraded but
    visible); success=False means there is nothing to show.
    """
    chapter_index: int
    success: bool
    image_url: Optional[str] = None
    is_backup: bool = False
    error: Optional[str] = None

    @model_validator(mode="after")
    def check_consistency(self):
        if self.success and not self.image_url:
            raise ValueError("successful illustration requires image_url")
        if self.success and self.error:
            raise ValueError("successful illustration cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("failed illustration requires an error message")
        if self.is_backup and not self.success:
            raise ValueError("backup images are only reported on success")
        return self

    @property
    def outcome(self) -> OperationOutcome:
        if not self.success:
            return OperationOutcome.FAILURE
        if self.is_backup:
            return OperationOutcome.SUCCESS_WITH_BACKUP
        return OperationOutcome.SUCCESS


class BulkIllustrationResult(BaseModel):
    story_id: Optional[int] = None
    results: List[IllustrationResult] = Field(default_factory=list)
    success_count: int = 0  # Provider-generated images only
    backup_count: int = 0
    failure_count: int = 0
    total_count: int = 0

    @classmethod
    def from_results(cls, story_id: Optional[int], results: List[IllustrationResult]) -> "BulkIllustrationResult":
        return cls(
            story_id=story_id,
            results=results,
            success_count=sum(1 for r in results if r.success and not r.is_backup),
            backup_count=sum(1 for r in results if r.is_backup),
            failure_count=sum(1 for r in results if not r.success),
            total_count=len(results),
        )


# ============================================================================
# Reading Sessions
# ============================================================================

class ReadingSession(BaseModel):
    id: Optional[int] = None
    child_id: int
    story_id: int
    progress: int = Field(default=0, ge=0, le=100)
    completed: bool = False
    duration: int = Field(default=0, ge=0)  # cumulative minutes
    last_read_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Provider Requests
# ============================================================================

class StoryGenerationParams(BaseModel):
    """Parameters sent to the text provider for one story."""
    prompt: str
    system_message: str
    temperature: float = 0.7
    max_tokens: Optional[int] = None
    tier: str = "free"


class ImageGenerationParams(BaseModel):
    prompt: str  # Chapter scene description, expanded by the gateway
    character_names: List[str] = Field(default_factory=list)
    style: IllustrationStyle = IllustrationStyle.CARTOON
    mood: IllustrationMood = IllustrationMood.ADVENTURE
    age_group: Optional[AgeGroup] = None
    story_id: Optional[int] = None
    chapter_index: Optional[int] = None


class GeneratedText(BaseModel):
    content: str
    provider: str
    model: str
    usage: Dict[str, Any] = Field(default_factory=dict)


class GeneratedImage(BaseModel):
    image_url: str
    provider: str
    model: str
    prompt_used: Optional[str] = None
