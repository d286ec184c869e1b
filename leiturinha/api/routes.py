"""
API routes for Leiturinha

REST endpoints for story generation, illustrations, narration, reading
progress and the catalog. Every mutating endpoint answers with
`invalidates`: the read paths the client should refetch.

Callers identify themselves with headers (authentication happens upstream):
    X-User-Id: 12
    X-Plan-Tier: free | plus | family
    X-User-Role: parent | admin
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException
from pydantic import BaseModel, Field

from leiturinha import __version__
from leiturinha.models.models import (
    AgeGroup,
    BulkIllustrationResult,
    IllustrationMood,
    IllustrationOptions,
    IllustrationResult,
    IllustrationStyle,
    OperationOutcome,
    Story,
    WizardSelection,
)
from leiturinha.models.profiles import ChildProfile, SessionContext
from leiturinha.services import ServiceContainer
from leiturinha.services.errors import ChildProfileNotFoundError, StoryNotFoundError
from leiturinha.services.events import reading_reads, story_reads

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["stories"])

# Global services (set by the main app)
_services: Optional[ServiceContainer] = None


def set_services(services: Optional[ServiceContainer]):
    """Set the global service container"""
    global _services
    _services = services


def get_services() -> ServiceContainer:
    if _services is None:
        raise HTTPException(status_code=500, detail="Services not initialized")
    return _services


def get_session(
    x_user_id: int = Header(...),
    x_plan_tier: str = Header("free"),
    x_user_role: str = Header("parent"),
    services: ServiceContainer = Depends(get_services),
) -> SessionContext:
    return services.sessions.build_session_context(x_user_id, x_plan_tier, x_user_role)


# =========================================================================
# Request models
# =========================================================================

class IllustrationRequest(BaseModel):
    style: Optional[IllustrationStyle] = None
    mood: Optional[IllustrationMood] = None
    age_group: Optional[AgeGroup] = None
    image_prompt: Optional[str] = Field(default=None, max_length=1000)


class ReadingProgressRequest(BaseModel):
    child_id: int
    story_id: int
    chapter_index: int = Field(..., ge=0)
    total_chapters: Optional[int] = Field(default=None, ge=1)  # defaults to the story's chapter count
    duration: int = Field(default=0, ge=0)  # minutes


class ReadingSessionUpdate(BaseModel):
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    completed: Optional[bool] = None
    duration: int = Field(default=0, ge=0)


class ChildProfileCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    age_group: AgeGroup
    avatar: Optional[str] = None


class SessionInvalidateRequest(BaseModel):
    reason: str = ""


# =========================================================================
# Helpers
# =========================================================================

ILLUSTRATION_MESSAGES = {
    OperationOutcome.SUCCESS: "Ilustração gerada com sucesso!",
    OperationOutcome.SUCCESS_WITH_BACKUP: (
        "Não foi possível gerar a ilustração agora. Mostramos uma imagem alternativa."
    ),
}


async def _load_story(services: ServiceContainer, story_id: int, session: SessionContext) -> Story:
    story = await services.storage.get_story(story_id)
    # Other users' stories are indistinguishable from missing ones
    if story is None or (story.user_id != session.user_id and not session.is_admin):
        raise StoryNotFoundError(story_id)
    return story


async def _check_child(services: ServiceContainer, child_id: int, session: SessionContext):
    profile = await services.storage.get_child_profile(child_id)
    if profile is None or (profile.parent_id != session.user_id and not session.is_admin):
        raise ChildProfileNotFoundError(child_id)


def _illustration_options(services: ServiceContainer, request: Optional[IllustrationRequest]) -> IllustrationOptions:
    request = request or IllustrationRequest()
    return IllustrationOptions(
        style=request.style or services.settings.illustration_default_style,
        mood=request.mood or services.settings.illustration_default_mood,
        age_group=request.age_group,
    )


def _illustration_payload(result: IllustrationResult) -> Dict[str, Any]:
    outcome = result.outcome
    return {
        "success": result.success,
        "outcome": outcome.value,
        "message": ILLUSTRATION_MESSAGES.get(outcome, result.error),
        "chapter_index": result.chapter_index,
        "image_url": result.image_url,
        "is_backup": result.is_backup,
    }


def _bulk_outcome(bulk: BulkIllustrationResult) -> OperationOutcome:
    if bulk.total_count and bulk.success_count == bulk.total_count:
        return OperationOutcome.SUCCESS
    if bulk.failure_count == bulk.total_count:
        return OperationOutcome.FAILURE
    return OperationOutcome.SUCCESS_WITH_BACKUP


async def _illustrate_in_background(services: ServiceContainer, story: Story):
    """Eager illustration after a story is created with text_only=False"""
    try:
        await services.illustrations.generate_all_illustrations(story)
    except Exception as e:
        logger.error(f"❌ Background illustration failed for story {story.id}: {e}", exc_info=True)


# =========================================================================
# Stories
# =========================================================================

@router.post("/stories/generate")
async def generate_story(
    selection: WizardSelection,
    background_tasks: BackgroundTasks,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    """
    Generate and store a story from a wizard selection.

    Illustrations start in the background when text_only is false; the
    chapter images arrive later through `GET /stories/{id}`.
    """
    story = await services.assembly.assemble(selection, session)

    if not story.text_only:
        background_tasks.add_task(_illustrate_in_background, services, story)

    return {
        "success": True,
        "message": "História criada com sucesso!",
        "story": story.model_dump(mode="json"),
        "illustrations_pending": not story.text_only,
        "invalidates": story_reads(story.id),
    }


@router.get("/stories")
async def list_stories(
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    stories = await services.storage.list_stories(session.user_id)
    return {
        "success": True,
        "stories": [s.model_dump(mode="json") for s in stories],
        "count": len(stories),
    }


@router.get("/stories/{story_id}")
async def get_story(
    story_id: int,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    story = await _load_story(services, story_id, session)
    return {"success": True, "story": story.model_dump(mode="json")}


@router.post("/stories/{story_id}/chapters/{chapter_index}/image")
async def generate_chapter_image(
    story_id: int,
    chapter_index: int,
    request: Optional[IllustrationRequest] = None,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    """
    Generate (or regenerate) one chapter's illustration.

    Always answers with an outcome: success, success_with_backup or failure.
    """
    story = await _load_story(services, story_id, session)
    result = await services.illustrations.generate_chapter_image(
        story,
        chapter_index,
        _illustration_options(services, request),
        image_prompt=request.image_prompt if request else None,
    )
    payload = _illustration_payload(result)
    payload["invalidates"] = [f"/api/stories/{story_id}"] if result.success else []
    return payload


@router.post("/stories/{story_id}/generateIllustrations")
async def generate_all_illustrations(
    story_id: int,
    request: Optional[IllustrationRequest] = None,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    """Illustrate every chapter; partial failures are reported per chapter"""
    story = await _load_story(services, story_id, session)
    bulk = await services.illustrations.generate_all_illustrations(
        story, _illustration_options(services, request)
    )
    outcome = _bulk_outcome(bulk)
    illustrated = bulk.success_count + bulk.backup_count

    return {
        "success": outcome != OperationOutcome.FAILURE,
        "outcome": outcome.value,
        "message": f"{illustrated} de {bulk.total_count} ilustrações prontas.",
        "story_id": story_id,
        "success_count": bulk.success_count,
        "backup_count": bulk.backup_count,
        "failure_count": bulk.failure_count,
        "total_count": bulk.total_count,
        "results": [_illustration_payload(r) for r in bulk.results],
        "invalidates": [f"/api/stories/{story_id}"] if illustrated else [],
    }


@router.post("/stories/{story_id}/chapters/{chapter_index}/audio")
async def generate_chapter_audio(
    story_id: int,
    chapter_index: int,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    """Narrate a chapter (plus and family plans)"""
    story = await _load_story(services, story_id, session)
    audio_url = await services.narration.generate_chapter_audio(story, chapter_index, session)
    return {
        "success": True,
        "message": "Narração pronta!",
        "chapter_index": chapter_index,
        "audio_url": audio_url,
        "invalidates": [f"/api/stories/{story_id}"],
    }


# =========================================================================
# Reading sessions
# =========================================================================

@router.post("/reading-sessions")
async def record_reading_progress(
    request: ReadingProgressRequest,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    await _check_child(services, request.child_id, session)
    story = await _load_story(services, request.story_id, session)
    total_chapters = request.total_chapters or max(1, len(story.chapters))

    try:
        reading = await services.reading.record_progress(
            request.child_id,
            request.story_id,
            request.chapter_index,
            total_chapters,
            duration_minutes=request.duration,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "session": reading.model_dump(mode="json"),
        "invalidates": reading_reads(request.child_id),
    }


@router.patch("/reading-sessions/{session_id}")
async def update_reading_session(
    session_id: int,
    request: ReadingSessionUpdate,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    existing = await services.storage.get_reading_session(session_id)
    if existing is not None:
        await _check_child(services, existing.child_id, session)

    try:
        reading = await services.reading.update_session(
            session_id,
            progress=request.progress,
            duration_minutes=request.duration,
            completed=request.completed,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "session": reading.model_dump(mode="json"),
        "invalidates": reading_reads(reading.child_id),
    }


@router.get("/reading-sessions/child/{child_id}")
async def list_reading_sessions(
    child_id: int,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    await _check_child(services, child_id, session)
    sessions = await services.reading.list_sessions(child_id)
    return {
        "success": True,
        "sessions": [s.model_dump(mode="json") for s in sessions],
        "count": len(sessions),
    }


# =========================================================================
# Child profiles
# =========================================================================

@router.get("/child-profiles")
async def list_child_profiles(
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    profiles = await services.storage.list_child_profiles(session.user_id)
    return {"success": True, "profiles": [p.model_dump(mode="json") for p in profiles]}


@router.post("/child-profiles")
async def create_child_profile(
    request: ChildProfileCreate,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    profile = await services.storage.create_child_profile(ChildProfile(
        id=0,  # assigned by storage
        parent_id=session.user_id,
        name=request.name,
        age_group=request.age_group,
        avatar=request.avatar,
    ))
    return {
        "success": True,
        "message": f"Perfil criado para {profile.name}",
        "profile": profile.model_dump(mode="json"),
        "invalidates": ["/api/child-profiles"],
    }


# =========================================================================
# Catalog
# =========================================================================

@router.get("/characters")
async def list_characters(services: ServiceContainer = Depends(get_services)):
    characters = await services.storage.get_characters()
    return {"success": True, "characters": [c.model_dump(mode="json") for c in characters]}


@router.get("/themes")
async def list_themes(age_group: Optional[AgeGroup] = None,
                      services: ServiceContainer = Depends(get_services)):
    themes = await services.storage.get_themes(age_group)
    return {"success": True, "themes": [t.model_dump(mode="json") for t in themes]}


@router.get("/subscription-plans")
async def list_subscription_plans(services: ServiceContainer = Depends(get_services)):
    plans = await services.storage.get_subscription_plans()
    return {"success": True, "plans": [p.model_dump(mode="json") for p in plans]}


# =========================================================================
# Session & health
# =========================================================================

@router.post("/session/invalidate")
async def invalidate_session(
    request: Optional[SessionInvalidateRequest] = None,
    session: SessionContext = Depends(get_session),
    services: ServiceContainer = Depends(get_services),
):
    """Called after login, logout or a plan change"""
    event = await services.sessions.invalidate(session.user_id, request.reason if request else "")
    return {"success": True, "invalidates": event.invalidates}


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    if _services is None:
        return {"status": "starting", "service": "Leiturinha", "version": __version__}
    return {
        "status": "healthy",
        "service": "Leiturinha",
        "version": __version__,
        "providers": _services.gateway.get_status(),
        "storage": type(_services.storage).__name__,
        "rate_limiter": _services.limiter.get_stats(),
    }
