"""
Service wiring.

One ServiceContainer per process: built in the FastAPI lifespan (kept on
app.state) or by the worker CLI. Tests build it from in-memory fakes.
"""

from datetime import timedelta

from fastapi import HTTPException, Request, status

from familyos.config import Settings, settings
from familyos.infrastructure.observability.logging import get_logger
from familyos.repositories.household_repository import (
    HouseholdRepository,
    PostgresHouseholdRepository,
)
from familyos.repositories.insight_repository import InsightRepository, PostgresInsightRepository
from familyos.repositories.memory_repository import MemoryRepository, PostgresMemoryRepository
from familyos.repositories.pending_action_repository import (
    PendingActionRepository,
    PostgresPendingActionRepository,
)
from familyos.repositories.subscription_repository import (
    PostgresSubscriptionRepository,
    SubscriptionRepository,
)
from familyos.repositories.trust_repository import PostgresTrustRepository, TrustRepository
from familyos.services.agent.executors import ActionExecutorRegistry, build_default_registry
from familyos.services.agent.memory_service import AgentMemory
from familyos.services.agent.orchestrator import AgentOrchestrator
from familyos.services.agent.trust_service import TrustScoreStore
from familyos.services.agent.workflow_service import PendingActionWorkflow
from familyos.services.calendar.google_client import GoogleCalendarService
from familyos.services.calendar.provider import (
    CalendarProvider,
    GoogleCalendarProvider,
    StoredTokenResolver,
)
from familyos.services.calendar.subscription_service import SubscriptionLifecycleManager
from familyos.services.calendar.sync_service import IncrementalSyncEngine
from familyos.services.infrastructure.background_runner import BackgroundTaskRunner
from familyos.services.intelligence.analyzer import HouseholdAnalyzer
from familyos.services.intelligence.dispatch import InsightDispatcher
from familyos.services.notifications.sms_sender import NotificationSender, build_sender

logger = get_logger(__name__)


class ServiceContainer:
    def __init__(
        self,
        *,
        subscription_repository: SubscriptionRepository,
        households: HouseholdRepository,
        insights: InsightRepository,
        trust_repository: TrustRepository,
        action_repository: PendingActionRepository,
        memory_repository: MemoryRepository,
        provider: CalendarProvider,
        sender: NotificationSender,
        runner: BackgroundTaskRunner,
        config: Settings = settings,
        executors: ActionExecutorRegistry | None = None,
    ):
        self.config = config
        self.households = households
        self.insights = insights
        self.provider = provider
        self.sender = sender
        self.runner = runner

        self.subscriptions = SubscriptionLifecycleManager(
            subscription_repository, households, provider
        )
        self.dispatcher = InsightDispatcher(
            insights, households, sender, timedelta(hours=config.INSIGHT_DEDUP_HOURS)
        )
        self.analyzer = HouseholdAnalyzer(households, provider, self.dispatcher)
        self.sync_engine = IncrementalSyncEngine(
            self.subscriptions, households, provider, runner, self.analyzer.analyze_household
        )

        self.trust = TrustScoreStore(trust_repository)
        self.workflow = PendingActionWorkflow(action_repository, self.trust)
        self.memory = AgentMemory(memory_repository)
        self.orchestrator = AgentOrchestrator(self.trust, self.workflow, self.memory)
        self.executors = executors or build_default_registry(provider, households, sender)

        self._closeables: list = []

    @classmethod
    def from_settings(
        cls, runner: BackgroundTaskRunner, config: Settings = settings
    ) -> "ServiceContainer":
        """Production wiring: Postgres repositories, Google Calendar, Twilio (or dev) SMS."""
        google = GoogleCalendarService()
        provider = GoogleCalendarProvider(
            google, StoredTokenResolver(), config.CALENDAR_WEBHOOK_URL, channel_token=None
        )
        sender = build_sender(config)

        container = cls(
            subscription_repository=PostgresSubscriptionRepository(),
            households=PostgresHouseholdRepository(),
            insights=PostgresInsightRepository(),
            trust_repository=PostgresTrustRepository(),
            action_repository=PostgresPendingActionRepository(),
            memory_repository=PostgresMemoryRepository(),
            provider=provider,
            sender=sender,
            runner=runner,
            config=config,
        )
        container._closeables = [google, sender]
        return container

    @property
    def renewal_window(self) -> timedelta:
        return timedelta(days=self.config.CHANNEL_RENEWAL_WINDOW_DAYS)

    async def close(self) -> None:
        for resource in self._closeables:
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.error(
                    "Error closing service resource",
                    resource=type(resource).__name__,
                    error=str(e),
                )


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready"
        )
    return container
