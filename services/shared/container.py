"""Process-wide service handles.

Built once at process start (API lifespan, worker startup) and closed at
stop. Every component receives its collaborators from here instead of
creating them at import time.
"""

import logging
from dataclasses import dataclass

from services.analysis.factory import AnalysisProviderPool
from services.analysis.orchestrator import AnalysisOrchestrator
from services.db.repository import InvoiceRepository
from services.db.session import Database
from services.extraction.text import TextExtractor
from services.notifications.service import NotificationService
from services.queue.dead_letter import DeadLetterRecorder
from services.shared.config import Settings
from services.storage.service import StorageService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    repository: InvoiceRepository
    storage: StorageService
    notifier: NotificationService
    providers: AnalysisProviderPool
    dead_letters: DeadLetterRecorder
    orchestrator: AnalysisOrchestrator
    extractor: TextExtractor

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Database | None = None,
        storage: StorageService | None = None,
        notifier: NotificationService | None = None,
        providers: AnalysisProviderPool | None = None,
    ) -> "ServiceContainer":
        """Create all shared handles.

        Args:
            settings: Application settings
            database: Prebuilt database (tests pass an in-memory one)
            storage: Prebuilt storage service
            notifier: Prebuilt notification service
            providers: Prebuilt provider pool

        Returns:
            Ready-to-use container
        """
        database = database or Database.from_settings(settings)
        database.create_all()

        repository = InvoiceRepository(database)
        storage = storage or StorageService(settings)
        notifier = notifier or NotificationService(settings)
        providers = providers or AnalysisProviderPool(settings)
        dead_letters = DeadLetterRecorder(repository)
        orchestrator = AnalysisOrchestrator(
            settings, repository, providers, notifier, dead_letters
        )

        logger.info(
            f"Services initialized (storage={'on' if storage.is_available() else 'off'}, "
            f"messaging={'on' if notifier.is_configured() else 'log-only'}, "
            f"ai_provider={settings.ai_provider})"
        )
        return cls(
            settings=settings,
            database=database,
            repository=repository,
            storage=storage,
            notifier=notifier,
            providers=providers,
            dead_letters=dead_letters,
            orchestrator=orchestrator,
            extractor=TextExtractor(),
        )

    def close(self) -> None:
        self.providers.close()
        self.notifier.close()
        self.database.dispose()
        logger.info("Services closed")
