"""
Session Manager

Builds the explicit SessionContext handed to every service call and turns
session changes (login, logout, plan upgrade) into a `session_invalidated`
event instead of relying on ambient cookie state.
"""

import logging
from typing import Optional, Union

from leiturinha.models.profiles import PlanTier, SessionContext
from leiturinha.services.events import EventEmitter, StoryEvent, story_events
from leiturinha.services.provider_router import ProviderRouter, get_provider_router

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(self, router: Optional[ProviderRouter] = None, events: Optional[EventEmitter] = None):
        self.router = router or get_provider_router()
        self.events = events or story_events

    def build_session_context(self, user_id: int, tier: Union[PlanTier, str] = PlanTier.FREE,
                              role: str = "parent") -> SessionContext:
        """
        Resolve a session from the caller's identity and plan.

        Unknown tiers fall back to free.
        """
        try:
            plan_tier = PlanTier(tier)
        except ValueError:
            logger.warning(f"Unknown plan tier '{tier}' for user {user_id}, using free")
            plan_tier = PlanTier.FREE

        return SessionContext(
            user_id=user_id,
            tier=plan_tier,
            role=role,
            entitlements=self.router.get_entitlements(plan_tier.value),
        )

    async def invalidate(self, user_id: int, reason: str = "") -> StoryEvent:
        """
        Mark the user's session stale; clients refetch the reads named by the event.

        Nothing is kept per user, the emitted event is the whole signal.
        """
        logger.info(f"🔑 Session invalidated for user {user_id}" + (f" ({reason})" if reason else ""))
        return await self.events.emit_session_invalidated(user_id, reason)

