"""
Profile and subscription models for Leiturinha

- ChildProfile: a child the parent reads stories with
- SubscriptionPlan: free / plus / family plans and their features
- SessionContext: explicit per-request session (user, tier, entitlements)
"""

from pydantic import BaseModel, Field
from typing import List, Optional, FrozenSet
from datetime import datetime, timezone
from enum import Enum

from leiturinha.models.models import AgeGroup


class PlanTier(str, Enum):
    FREE = "free"
    PLUS = "plus"
    FAMILY = "family"


class Entitlement(str, Enum):
    PERSONALIZATION = "personalization"  # Child's name inside the story
    NARRATION = "narration"              # Chapter audio
    PREMIUM_CONTENT = "premium_content"  # Premium characters and themes


class ChildProfile(BaseModel):
    id: int
    parent_id: int
    name: str = Field(..., min_length=1, max_length=100)
    age_group: AgeGroup
    avatar: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SubscriptionPlan(BaseModel):
    id: int
    tier: PlanTier
    name: str
    price_cents: int
    description: str
    features: List[str] = Field(default_factory=list)


class SessionContext(BaseModel):
    """
    Explicit session passed to every service call.

    Replaces ambient auth/cookie state: services never look anything up
    globally, they receive who is asking and what the plan allows.
    """
    user_id: int
    tier: PlanTier = PlanTier.FREE
    role: str = "parent"
    entitlements: FrozenSet[Entitlement] = Field(default_factory=frozenset)

    def has_entitlement(self, entitlement: Entitlement) -> bool:
        return entitlement in self.entitlements

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
