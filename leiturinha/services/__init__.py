"""
Services package

ServiceContainer wires the services used by the API:

    services = build_services(settings, storage)
    story = await services.assembly.assemble(selection, session)
"""

from dataclasses import dataclass
from typing import Optional

from leiturinha.config.settings import Settings
from leiturinha.services.events import EventEmitter, story_events
from leiturinha.services.gateway import AIProviderGateway, get_gateway
from leiturinha.services.illustration import BackupImagePool, IllustrationOrchestrator
from leiturinha.services.narration import NarrationService
from leiturinha.services.rate_limiter import ProviderConcurrencyLimiter, get_concurrency_limiter
from leiturinha.services.reading import ReadingProgressTracker
from leiturinha.services.session import SessionManager
from leiturinha.services.storage import InMemoryStorage, StorageService
from leiturinha.services.story_assembly import StoryAssemblyService


@dataclass
class ServiceContainer:
    settings: Settings
    storage: StorageService
    gateway: AIProviderGateway
    events: EventEmitter
    limiter: ProviderConcurrencyLimiter
    sessions: SessionManager
    assembly: StoryAssemblyService
    illustrations: IllustrationOrchestrator
    narration: NarrationService
    reading: ReadingProgressTracker


def build_services(
    settings: Settings,
    storage: StorageService,
    gateway: Optional[AIProviderGateway] = None,
    events: Optional[EventEmitter] = None,
    limiter: Optional[ProviderConcurrencyLimiter] = None,
) -> ServiceContainer:
    gateway = gateway or get_gateway()
    events = events or story_events
    limiter = limiter or get_concurrency_limiter()
    return ServiceContainer(
        settings=settings,
        storage=storage,
        gateway=gateway,
        events=events,
        limiter=limiter,
        sessions=SessionManager(router=gateway.router, events=events),
        assembly=StoryAssemblyService(gateway, storage, events),
        illustrations=IllustrationOrchestrator(
            gateway, storage, BackupImagePool(settings.backup_images), limiter, events
        ),
        narration=NarrationService(gateway, storage, events, settings),
        reading=ReadingProgressTracker(storage, events),
    )


__all__ = [
    "ServiceContainer",
    "build_services",
    "InMemoryStorage",
    "StorageService",
]
