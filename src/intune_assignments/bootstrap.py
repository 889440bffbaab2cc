from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from intune_assignments.auth import TokenProvider
from intune_assignments.config import AssignmentEngineSettings, Settings, SettingsManager
from intune_assignments.data.history import AssignmentHistoryStore, AssignmentStatistics
from intune_assignments.graph.client import GraphClient, GraphClientConfig
from intune_assignments.graph.rate_limiter import RateLimiter
from intune_assignments.services import (
    AssignmentService,
    BulkAssignmentReport,
    GraphAssignmentGateway,
)
from intune_assignments.utils import get_logger


logger = get_logger(__name__)


@dataclass(slots=True)
class AssignmentEngine:
    """Container for the wired assignment services."""

    client: GraphClient
    rate_limiter: RateLimiter
    assignments: AssignmentService
    history: AssignmentHistoryStore
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list, repr=False)

    def statistics(self) -> AssignmentStatistics:
        return self.history.statistics()

    async def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.assignments.cancel_active_assignments()
        await self.client.close()


def _record_history(store: AssignmentHistoryStore) -> Callable[[BulkAssignmentReport], None]:
    def handler(report: BulkAssignmentReport) -> None:
        if not report.assignments:
            return
        stored = store.append(report.assignments)
        logger.debug(
            "Recorded assignment outcomes",
            operation_id=report.operation_id,
            recorded=len(report.assignments),
            stored=stored,
        )

    return handler


def build_assignment_engine(
    settings: Settings,
    token_provider: TokenProvider,
    *,
    engine_settings: AssignmentEngineSettings | None = None,
) -> AssignmentEngine:
    """Wire the Graph client, rate limiter, service and history sink together.

    ``engine_settings`` defaults to the values in the managed env file.
    """

    engine_settings = engine_settings or SettingsManager().load_engine()
    config = GraphClientConfig(
        scopes=list(settings.configured_scopes()),
        default_timeout=engine_settings.write_timeout,
    )
    client = GraphClient(token_provider, config)
    rate_limiter = RateLimiter.from_settings(engine_settings)
    service = AssignmentService(
        GraphAssignmentGateway(client),
        rate_limiter,
        engine_settings,
    )
    history = AssignmentHistoryStore.from_settings(engine_settings)
    engine = AssignmentEngine(
        client=client,
        rate_limiter=rate_limiter,
        assignments=service,
        history=history,
    )
    engine._unsubscribers.append(service.completed.subscribe(_record_history(history)))
    logger.info(
        "Assignment engine initialised",
        tenant_id=settings.tenant_id,
        max_concurrent_writes=engine_settings.max_concurrent_writes,
        conflict_policy=engine_settings.conflict_policy.value,
        history_path=str(history.path),
    )
    return engine


__all__ = ["AssignmentEngine", "build_assignment_engine"]
