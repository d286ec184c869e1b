"""
Models package - Pydantic data models for Leiturinha

Re-exports all models for cleaner imports:
    from leiturinha.models import Story, Chapter, WizardSelection
    from leiturinha.models import SessionContext, Entitlement
"""

from leiturinha.models.models import *
from leiturinha.models.profiles import (
    PlanTier,
    Entitlement,
    ChildProfile,
    SubscriptionPlan,
    SessionContext,
)
