from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Awaitable, Callable, Iterable, Sequence

from intune_assignments.config.settings import AssignmentEngineSettings, ConflictPolicy
from intune_assignments.data.history import AssignmentStatistics, summarize_assignments
from intune_assignments.data.models.application import MobileApp
from intune_assignments.data.models.assignment import (
    Assignment,
    AssignmentFilter,
    AssignmentFilterType,
    AssignmentStatus,
    MobileAppAssignment,
    build_target,
)
from intune_assignments.data.models.group import DirectoryGroup
from intune_assignments.data.models.operation import BulkAssignmentOperation
from intune_assignments.graph.errors import GraphAPIError, GraphErrorCategory
from intune_assignments.graph.rate_limiter import RateLimiter
from intune_assignments.services.base import (
    EventHook,
    MutationStatus,
    ServiceErrorEvent,
    run_optimistic_mutation,
)
from intune_assignments.services.conflicts import (
    AssignmentConflictDetector,
    CandidateAssignment,
    ConflictKind,
    IntentConflict,
)
from intune_assignments.services.errors import (
    AssignmentConflictError,
    BulkAssignmentError,
    BusyError,
    EmptySelectionError,
    IntentValidationError,
    NoFailedAssignmentsError,
)
from intune_assignments.services.gateway import (
    AssignmentGateway,
    AssignmentWrite,
    AssignmentWriteResult,
)
from intune_assignments.services.intent_validator import AssignmentIntentValidator
from intune_assignments.services.progress import (
    AssignmentProgress,
    AssignmentProgressTracker,
)
from intune_assignments.utils.cancellation import (
    CancellationToken,
    CancellationTokenSource,
)
from intune_assignments.utils.errors import describe_exception, is_timeout
from intune_assignments.utils.logging import bind_operation_context, get_logger


logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

VALIDATION_CATEGORY = GraphErrorCategory.VALIDATION.value


class OperationState(StrEnum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    CANCELLED = "cancelled"
    FATALLY_FAILED = "fatally_failed"

    @property
    def is_active(self) -> bool:
        return self in {OperationState.PLANNING, OperationState.EXECUTING}

    @property
    def is_terminal(self) -> bool:
        return self in {
            OperationState.COMPLETED,
            OperationState.PARTIALLY_FAILED,
            OperationState.CANCELLED,
            OperationState.FATALLY_FAILED,
        }


@dataclass(slots=True, frozen=True)
class AssignmentServiceSnapshot:
    state: OperationState
    progress: AssignmentProgress
    operation_id: str | None = None
    last_error: str | None = None

    @property
    def is_processing(self) -> bool:
        return self.state.is_active


@dataclass(slots=True, frozen=True)
class SkippedPair:
    application_id: str
    application_name: str
    group_id: str
    group_name: str
    reason: ConflictKind
    existing_assignment_id: str | None = None


@dataclass(slots=True, frozen=True)
class BulkAssignmentReport:
    operation_id: str
    state: OperationState
    assignments: tuple[Assignment, ...]
    skipped: tuple[SkippedPair, ...]
    advisories: tuple[IntentConflict, ...]
    progress: AssignmentProgress
    is_retry: bool = False
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_status(self, status: AssignmentStatus) -> list[Assignment]:
        return [item for item in self.assignments if item.status is status]

    @property
    def completed(self) -> list[Assignment]:
        return self.with_status(AssignmentStatus.COMPLETED)

    @property
    def failed(self) -> list[Assignment]:
        return self.with_status(AssignmentStatus.FAILED)

    @property
    def cancelled(self) -> list[Assignment]:
        return self.with_status(AssignmentStatus.CANCELLED)


@dataclass(slots=True)
class AssignmentWriteEvent:
    application_id: str
    attempt: int
    status: MutationStatus
    error: Exception | None = None


@dataclass(slots=True)
class PlannedTask:
    """An assignment record plus the frozen context needed to (re)execute it."""

    assignment: Assignment
    application: MobileApp
    group: DirectoryGroup
    replaces: tuple[MobileAppAssignment, ...] = ()
    rejected: bool = False
    conflict_policy: ConflictPolicy | None = None
    previous_error: tuple[str | None, str | None] = (None, None)

    def desired(self) -> MobileAppAssignment:
        record = self.assignment
        filter_id = record.filter.filter_id if record.filter else None
        filter_type = record.filter.filter_type if record.filter else AssignmentFilterType.NONE
        settings = None
        if record.settings is not None:
            settings = record.settings.to_graph_settings(self.application.app_type)
        return MobileAppAssignment(
            intent=record.intent,
            target=build_target(
                record.target_type,
                record.group_id if record.target_type.requires_group_id else None,
                filter_id=filter_id,
                filter_type=filter_type,
            ),
            settings=settings,
        )


@dataclass(slots=True)
class _Plan:
    ordered: list[PlannedTask] = field(default_factory=list)
    tasks: list[PlannedTask] = field(default_factory=list)
    skipped: list[SkippedPair] = field(default_factory=list)
    advisories: list[IntentConflict] = field(default_factory=list)
    existing: dict[str, tuple[MobileAppAssignment, ...]] = field(default_factory=dict)


@dataclass(slots=True)
class _PendingWrite:
    write: AssignmentWrite
    tasks: list[PlannedTask]


class AssignmentService:
    """Plan and execute bulk application assignments against Intune.

    One operation runs at a time per instance. Planning validates each
    (application, target) pair and drops duplicates of existing assignments;
    execution issues one remote write per application through a small worker
    pool gated by the shared rate limiter. Failures are recorded per
    assignment, so a call only raises for planning problems or when busy.
    """

    def __init__(
        self,
        gateway: AssignmentGateway,
        rate_limiter: RateLimiter | None = None,
        settings: AssignmentEngineSettings | None = None,
        *,
        sleep: SleepFunc | None = None,
        validator: type[AssignmentIntentValidator] = AssignmentIntentValidator,
        detector: type[AssignmentConflictDetector] = AssignmentConflictDetector,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or AssignmentEngineSettings()
        self._rate_limiter = rate_limiter or RateLimiter.from_settings(self._settings)
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._validator = validator
        self._detector = detector

        self._state = OperationState.IDLE
        self._operation_id: str | None = None
        self._last_error: str | None = None
        self._tracker = AssignmentProgressTracker()
        self._progress = AssignmentProgress.idle()
        self._progress_lock = asyncio.Lock()
        self._cancel_source: CancellationTokenSource | None = None

        self._known_assignments: dict[str, tuple[MobileAppAssignment, ...]] = {}
        self._retained: OrderedDict[str, PlannedTask] = OrderedDict()
        self._history: OrderedDict[str, Assignment] = OrderedDict()
        self._last_report: BulkAssignmentReport | None = None

        self.changes: EventHook[AssignmentServiceSnapshot] = EventHook()
        self.progress_updates: EventHook[AssignmentProgress] = EventHook()
        self.completed: EventHook[BulkAssignmentReport] = EventHook()
        self.writes: EventHook[AssignmentWriteEvent] = EventHook()
        self.errors: EventHook[ServiceErrorEvent] = EventHook()

    # ----------------------------------------------------------------- State

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def is_processing(self) -> bool:
        return self._state.is_active

    @property
    def progress(self) -> AssignmentProgress:
        return self._progress

    @property
    def last_report(self) -> BulkAssignmentReport | None:
        return self._last_report

    @property
    def failed_assignments(self) -> list[Assignment]:
        return [task.assignment for task in self._retained.values()]

    def snapshot(self) -> AssignmentServiceSnapshot:
        return AssignmentServiceSnapshot(
            state=self._state,
            progress=self._progress,
            operation_id=self._operation_id,
            last_error=self._last_error,
        )

    def known_assignments(self, application_id: str) -> tuple[MobileAppAssignment, ...] | None:
        return self._known_assignments.get(application_id)

    def forget_known_assignments(self, application_id: str | None = None) -> None:
        if application_id is None:
            self._known_assignments.clear()
        else:
            self._known_assignments.pop(application_id, None)

    def clear_failed_assignments(self) -> None:
        self._ensure_idle()
        self._retained.clear()

    def statistics(self) -> AssignmentStatistics:
        """Counts over the assignments processed by this instance (most recent first kept)."""

        return summarize_assignments(self._history.values())

    # ------------------------------------------------------------ Operations

    async def perform_bulk_assignment(
        self, operation: BulkAssignmentOperation
    ) -> list[Assignment]:
        self._ensure_idle()
        policy = operation.conflict_policy or self._settings.conflict_policy
        self._begin(operation.id)
        with bind_operation_context(operation.id, mode="bulk"):
            logger.info(
                "Bulk assignment requested",
                applications=len(operation.applications),
                groups=len(operation.groups),
                intent=operation.intent.value,
                policy=policy.value,
            )
            try:
                if operation.is_empty:
                    raise EmptySelectionError()
                tasks = self._expand(operation, policy)
                plan = await self._plan(tasks, policy)
            except asyncio.CancelledError:
                self._fail_fatally("Planning interrupted")
                raise
            except Exception as exc:
                self._fail_fatally(str(exc) or type(exc).__name__)
                self.errors.emit(ServiceErrorEvent(operation_id=operation.id, error=exc))
                raise
            return await self._run(operation.id, plan, is_retry=False)

    async def retry_failed_assignments(
        self,
        selective: bool = True,
        assignment_ids: Iterable[str] | None = None,
    ) -> list[Assignment]:
        """Re-plan and re-execute previously failed assignments.

        Selective retries skip validation rejections, which fail the same way
        until the selection changes; ``assignment_ids`` narrows the set
        explicitly.
        """

        self._ensure_idle()
        candidates = list(self._retained.values())
        if assignment_ids is not None:
            wanted = set(assignment_ids)
            candidates = [task for task in candidates if task.assignment.id in wanted]
        elif selective:
            candidates = [
                task
                for task in candidates
                if not task.rejected
            ]
        if not candidates:
            raise NoFailedAssignmentsError()

        operation_id = str(uuid.uuid4())
        for task in candidates:
            task.replaces = ()
            task.rejected = False
            task.previous_error = (
                task.assignment.error_message,
                task.assignment.error_category,
            )
            task.assignment.retry_count += 1
            task.assignment.batch_id = operation_id
            task.assignment.mark(AssignmentStatus.RETRYING)

        self._begin(operation_id)
        with bind_operation_context(operation_id, mode="retry"):
            logger.info(
                "Retrying failed assignments",
                count=len(candidates),
                selective=selective,
            )
            try:
                plan = await self._plan(candidates, self._settings.conflict_policy)
            except asyncio.CancelledError:
                self._fail_fatally("Planning interrupted")
                raise
            except Exception as exc:
                self._fail_fatally(str(exc) or type(exc).__name__)
                self.errors.emit(ServiceErrorEvent(operation_id=operation_id, error=exc))
                raise
            return await self._run(operation_id, plan, is_retry=True)

    def cancel_active_assignments(self) -> bool:
        """Request cooperative cancellation; returns False when nothing is running."""

        if not self._state.is_active or self._cancel_source is None:
            return False
        cancelled = self._cancel_source.cancel(reason="Cancelled by user")
        if cancelled:
            logger.info("Cancellation requested", operation_id=self._operation_id)
        return cancelled

    # -------------------------------------------------------------- Planning

    def _expand(
        self, operation: BulkAssignmentOperation, policy: ConflictPolicy
    ) -> list[PlannedTask]:
        tasks: list[PlannedTask] = []
        for app in operation.applications:
            for group in operation.groups:
                override = operation.override_for(app, group)
                if override is not None:
                    target_type = override.target_type_for(group)
                    intent = override.intent
                    settings = override.settings or operation.settings
                    assignment_filter = None
                    if override.filter_id:
                        assignment_filter = AssignmentFilter(
                            filter_id=override.filter_id,
                            filter_type=override.filter_mode or AssignmentFilterType.INCLUDE,
                        )
                else:
                    target_type = group.target_type
                    intent = operation.intent
                    settings = operation.settings
                    assignment_filter = None
                record = Assignment(
                    application_id=app.id,
                    application_name=app.display_name,
                    group_id=group.id,
                    group_name=group.display_name,
                    target_type=target_type,
                    intent=intent,
                    settings=settings,
                    filter=assignment_filter,
                    batch_id=operation.id,
                )
                tasks.append(
                    PlannedTask(
                        assignment=record,
                        application=app,
                        group=group,
                        conflict_policy=policy,
                    )
                )
        return tasks

    async def _plan(self, tasks: Sequence[PlannedTask], policy: ConflictPolicy) -> _Plan:
        plan = _Plan()
        by_app: OrderedDict[str, list[PlannedTask]] = OrderedDict()
        for task in tasks:
            by_app.setdefault(task.application.id, []).append(task)

        for app_id, app_tasks in by_app.items():
            app = app_tasks[0].application
            admitted: list[PlannedTask] = []
            for task in app_tasks:
                record = task.assignment
                verdict = self._validator.validate(
                    record.intent,
                    app.app_type,
                    record.target_type,
                    app.supported_platforms,
                )
                if not verdict.valid:
                    task.rejected = True
                    rejection = IntentValidationError(
                        verdict.reason or "Intent is not valid for this app and target",
                        application_id=app_id,
                        group_id=record.group_id,
                    )
                    record.mark(
                        AssignmentStatus.FAILED,
                        error_message=rejection.reason,
                        error_category=VALIDATION_CATEGORY,
                    )
                    plan.ordered.append(task)
                    logger.info(
                        "Assignment rejected by validation",
                        app_id=app_id,
                        group_id=record.group_id,
                        intent=record.intent.value,
                        reason=verdict.reason,
                    )
                    continue
                admitted.append(task)

            if not admitted:
                continue

            try:
                existing = await self._resolve_existing(app)
            except Exception as exc:  # noqa: BLE001
                self._fail_unresolved(plan, admitted, exc)
                continue
            plan.existing[app_id] = existing
            candidates: list[CandidateAssignment] = []
            for task in admitted:
                record = task.assignment
                decision = self._detector.classify(
                    existing, record.target_type, record.group_id, record.intent
                )
                task_policy = task.conflict_policy or policy
                if decision.is_duplicate or (
                    decision.is_conflicting and task_policy is ConflictPolicy.SKIP
                ):
                    plan.skipped.append(
                        SkippedPair(
                            application_id=app_id,
                            application_name=record.application_name,
                            group_id=record.group_id,
                            group_name=record.group_name,
                            reason=decision.kind,
                            existing_assignment_id=decision.existing.id
                            if decision.existing
                            else None,
                        )
                    )
                    logger.info(
                        "Skipping assignment",
                        app_id=app_id,
                        group_id=record.group_id,
                        reason=decision.kind.value,
                    )
                    if decision.is_conflicting:
                        self.errors.emit(
                            ServiceErrorEvent(
                                operation_id=self._operation_id,
                                error=AssignmentConflictError(
                                    decision,
                                    application_id=app_id,
                                    group_id=record.group_id,
                                ),
                            )
                        )
                    continue
                if decision.is_conflicting:
                    task.replaces = decision.matches
                    logger.info(
                        "Overwriting conflicting assignment",
                        app_id=app_id,
                        group_id=record.group_id,
                        existing_intents=[str(item.intent) for item in decision.matches],
                        intent=record.intent.value,
                    )
                if record.status is not AssignmentStatus.RETRYING:
                    record.mark(AssignmentStatus.PENDING)
                plan.tasks.append(task)
                plan.ordered.append(task)
                candidates.append(
                    CandidateAssignment(
                        target_type=record.target_type,
                        group_id=record.group_id,
                        intent=record.intent,
                    )
                )

            for finding in self._detector.review(existing, candidates):
                plan.advisories.append(finding)
                logger.warning(
                    "Assignment intent advisory",
                    app_id=app_id,
                    conflict=finding.conflict_type.value,
                    severity=finding.severity.value,
                    resolution=finding.resolution,
                )
        return plan

    async def _resolve_existing(self, app: MobileApp) -> tuple[MobileAppAssignment, ...]:
        cached = self._known_assignments.get(app.id)
        if cached is not None:
            return cached
        if app.assignments is not None:
            return tuple(app.assignments)
        timeout = self._settings.write_timeout
        max_attempts = self._settings.max_attempts
        attempt = 0
        timeouts = 0
        while True:
            attempt += 1
            advisory = await self._rate_limiter.acquire(is_write=False)
            if advisory > 0:
                await self._sleep(advisory)
            try:
                fetched = await asyncio.wait_for(
                    self._gateway.fetch_current_assignments(app.id), timeout
                )
            except Exception as exc:  # noqa: BLE001
                delay = await self._retry_delay(exc, attempt, timeouts, max_attempts)
                if is_timeout(exc):
                    timeouts += 1
                if delay is None:
                    raise
                logger.warning(
                    "Fetching existing assignments failed, retrying",
                    app_id=app.id,
                    attempt=attempt,
                    delay=delay,
                    error=describe_exception(exc).summary,
                )
                if delay > 0:
                    await self._sleep(delay)
                continue
            break
        await self._rate_limiter.reset_rate_limit_tracking()
        existing = tuple(fetched)
        self._known_assignments[app.id] = existing
        return existing

    def _fail_unresolved(
        self, plan: _Plan, tasks: Sequence[PlannedTask], error: Exception
    ) -> None:
        """Fail ``tasks`` whose app has an unknown assignment baseline.

        The assign action replaces the whole set, so writing without the
        current assignments would delete them.
        """

        descriptor = describe_exception(error)
        message = f"Could not read current assignments: {descriptor.summary}"
        for task in tasks:
            task.assignment.mark(
                AssignmentStatus.FAILED,
                error_message=message,
                error_category=descriptor.category,
            )
            plan.ordered.append(task)
        app_id = tasks[0].application.id
        logger.error(
            "Existing assignments unavailable, skipping writes",
            app_id=app_id,
            tasks=len(tasks),
            category=descriptor.category,
            error=descriptor.detail,
        )
        self.errors.emit(ServiceErrorEvent(operation_id=self._operation_id, error=error))

    # ------------------------------------------------------------- Execution

    async def _run(
        self, operation_id: str, plan: _Plan, *, is_retry: bool
    ) -> list[Assignment]:
        token = self._cancel_source.token if self._cancel_source else None
        writes = self._build_writes(plan)
        async with self._progress_lock:
            self._state = OperationState.EXECUTING
            self._publish_progress(self._tracker.start(total=len(plan.tasks)))

        logger.info(
            "Executing assignment writes",
            tasks=len(plan.tasks),
            writes=len(writes),
            skipped=len(plan.skipped),
            rejected=len(plan.ordered) - len(plan.tasks),
        )

        queue: deque[_PendingWrite] = deque(writes)
        worker_count = min(self._settings.max_concurrent_writes, len(writes))
        workers = [
            asyncio.create_task(self._worker(queue, token), name=f"assignment-writer-{index}")
            for index in range(worker_count)
        ]
        try:
            if workers:
                await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self._cancel_unfinished(plan.tasks)
            self._finish(operation_id, plan, is_retry=is_retry)
            raise

        return self._finish(operation_id, plan, is_retry=is_retry)

    def _build_writes(self, plan: _Plan) -> list[_PendingWrite]:
        grouped: OrderedDict[str, list[PlannedTask]] = OrderedDict()
        for task in plan.tasks:
            grouped.setdefault(task.application.id, []).append(task)

        writes: list[_PendingWrite] = []
        for app_id, tasks in grouped.items():
            replaced = {id(item) for task in tasks for item in task.replaces}
            keep = tuple(
                item for item in plan.existing.get(app_id, ()) if id(item) not in replaced
            )
            write = AssignmentWrite(
                application_id=app_id,
                application_name=tasks[0].application.display_name,
                keep=keep,
                add=tuple(task.desired() for task in tasks),
                assignment_ids=tuple(task.assignment.id for task in tasks),
            )
            writes.append(_PendingWrite(write=write, tasks=tasks))
        return writes

    async def _worker(
        self, queue: deque[_PendingWrite], token: CancellationToken | None
    ) -> None:
        while queue:
            item = queue.popleft()
            if token is not None and token.cancelled:
                await self._settle(item.tasks, AssignmentStatus.CANCELLED)
                continue
            await self._execute_write(item, token)

    async def _execute_write(
        self, item: _PendingWrite, token: CancellationToken | None
    ) -> None:
        write = item.write
        timeout = self._settings.write_timeout
        max_attempts = self._settings.max_attempts
        async with self._progress_lock:
            for task in item.tasks:
                if task.assignment.status is not AssignmentStatus.RETRYING:
                    task.assignment.mark(AssignmentStatus.IN_PROGRESS)
            self._publish_progress(
                self._tracker.set_current(
                    application=write.application_name,
                    group=", ".join(task.assignment.group_name for task in item.tasks),
                )
            )

        attempt = 0
        timeouts = 0
        while True:
            attempt += 1
            if attempt > 1 and token is not None and token.cancelled:
                await self._settle(item.tasks, AssignmentStatus.CANCELLED)
                return
            advisory = await self._rate_limiter.acquire(is_write=True)
            if advisory > 0:
                await self._sleep(advisory)

            def event_builder(
                status: MutationStatus, error: Exception | None = None, *, _attempt: int = attempt
            ) -> AssignmentWriteEvent:
                return AssignmentWriteEvent(
                    application_id=write.application_id,
                    attempt=_attempt,
                    status=status,
                    error=error,
                )

            async def operation() -> AssignmentWriteResult:
                return await asyncio.wait_for(
                    self._gateway.execute(write, timeout=timeout), timeout
                )

            try:
                result = await run_optimistic_mutation(
                    emitter=self.writes,
                    event_builder=event_builder,
                    operation=operation,
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                delay = await self._retry_delay(exc, attempt, timeouts, max_attempts)
                if is_timeout(exc):
                    timeouts += 1
                if delay is None:
                    await self._record_failure(item, exc, attempt)
                    return
                logger.warning(
                    "Assignment write failed, retrying",
                    app_id=write.application_id,
                    attempt=attempt,
                    delay=delay,
                    error=describe_exception(exc).summary,
                )
                async with self._progress_lock:
                    for task in item.tasks:
                        task.assignment.mark(AssignmentStatus.RETRYING)
                    self._publish_state()
                if delay > 0:
                    await self._sleep(delay)
                continue

            await self._record_success(item, result)
            return

    async def _retry_delay(
        self,
        error: Exception,
        attempt: int,
        timeouts: int,
        max_attempts: int,
    ) -> float | None:
        """Return how long to wait before the next attempt, or None to give up."""

        if isinstance(error, GraphAPIError) and error.category is GraphErrorCategory.RATE_LIMIT:
            delay = await self._rate_limiter.record_rate_limit(error.retry_after)
            return delay if attempt < max_attempts else None
        if is_timeout(error):
            if timeouts >= 1 or attempt >= max_attempts:
                return None
            return await self._rate_limiter.calculate_retry_delay(attempt=attempt)
        if attempt >= max_attempts:
            return None
        if describe_exception(error).transient:
            return await self._rate_limiter.calculate_retry_delay(attempt=attempt)
        return None

    async def _record_success(self, item: _PendingWrite, result: AssignmentWriteResult) -> None:
        app_id = item.write.application_id
        await self._rate_limiter.reset_rate_limit_tracking()
        self._known_assignments[app_id] = tuple(result.assignments)
        if self._settings.refresh_after_write:
            try:
                refreshed = await self._gateway.fetch_current_assignments(app_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Post-write refresh failed",
                    app_id=app_id,
                    error=describe_exception(exc).summary,
                )
            else:
                self._known_assignments[app_id] = tuple(refreshed)
        await self._settle(item.tasks, AssignmentStatus.COMPLETED)
        logger.info(
            "Assignment write succeeded",
            app_id=app_id,
            assignments=len(item.tasks),
        )

    async def _record_failure(self, item: _PendingWrite, error: Exception, attempt: int) -> None:
        descriptor = describe_exception(error)
        await self._settle(
            item.tasks,
            AssignmentStatus.FAILED,
            error_message=descriptor.summary,
            error_category=descriptor.category,
        )
        logger.error(
            "Assignment write failed",
            app_id=item.write.application_id,
            attempts=attempt,
            category=descriptor.category,
            transient=descriptor.transient,
            error=descriptor.detail,
        )

    async def _settle(
        self,
        tasks: Sequence[PlannedTask],
        status: AssignmentStatus,
        *,
        error_message: str | None = None,
        error_category: str | None = None,
    ) -> None:
        async with self._progress_lock:
            for task in tasks:
                task.assignment.mark(
                    status, error_message=error_message, error_category=error_category
                )
            count = len(tasks)
            if status is AssignmentStatus.COMPLETED:
                snapshot = self._tracker.succeeded(count)
            elif status is AssignmentStatus.FAILED:
                snapshot = self._tracker.failed(count)
            else:
                snapshot = self._tracker.cancelled(count)
            self._publish_progress(snapshot)

    async def _cancel_unfinished(self, tasks: Sequence[PlannedTask]) -> None:
        unfinished = [task for task in tasks if not task.assignment.status.is_terminal]
        if unfinished:
            await self._settle(unfinished, AssignmentStatus.CANCELLED)

    # ------------------------------------------------------------ Completion

    def _finish(self, operation_id: str, plan: _Plan, *, is_retry: bool) -> list[Assignment]:
        results = [task.assignment for task in plan.ordered]
        statuses = {record.status for record in results}
        if AssignmentStatus.CANCELLED in statuses:
            state = OperationState.CANCELLED
        elif AssignmentStatus.FAILED in statuses:
            state = OperationState.PARTIALLY_FAILED
        else:
            state = OperationState.COMPLETED

        if is_retry:
            for skipped in plan.skipped:
                self._resolve_skipped_retry(skipped)
        else:
            self._retained.clear()
        for task in plan.ordered:
            record = task.assignment
            if record.status is AssignmentStatus.FAILED:
                self._retained[record.id] = task
            elif is_retry and record.status is AssignmentStatus.CANCELLED:
                # Never re-attempted, so the earlier failure still stands.
                message, category = task.previous_error
                record.mark(
                    AssignmentStatus.FAILED,
                    error_message=message,
                    error_category=category,
                )
                self._retained[record.id] = task
            elif record.status is AssignmentStatus.COMPLETED or not is_retry:
                self._retained.pop(record.id, None)

        self._remember(results)
        progress = self._tracker.finish()
        self._progress = progress
        self._state = state
        self._last_error = next(
            (record.error_message for record in results if record.error_message), None
        )
        report = BulkAssignmentReport(
            operation_id=operation_id,
            state=state,
            assignments=tuple(results),
            skipped=tuple(plan.skipped),
            advisories=tuple(plan.advisories),
            progress=progress,
            is_retry=is_retry,
        )
        self._last_report = report
        logger.info(
            "Bulk assignment finished",
            state=state.value,
            completed=progress.completed,
            failed=len(report.failed),
            cancelled=progress.cancelled,
            skipped=len(plan.skipped),
        )
        self.progress_updates.emit(progress)
        self._publish_state()
        self.completed.emit(report)
        return results

    def _resolve_skipped_retry(self, skipped: SkippedPair) -> None:
        for assignment_id, task in list(self._retained.items()):
            record = task.assignment
            if (
                record.application_id != skipped.application_id
                or record.group_id != skipped.group_id
            ):
                continue
            if skipped.reason is ConflictKind.DUPLICATE:
                # Already present remotely, so the earlier failure no longer matters.
                record.mark(AssignmentStatus.COMPLETED)
                self._retained.pop(assignment_id, None)
            else:
                record.mark(
                    AssignmentStatus.FAILED,
                    error_message="Skipped: a conflicting assignment already exists",
                    error_category=GraphErrorCategory.CONFLICT.value,
                )

    def _remember(self, records: Iterable[Assignment]) -> None:
        for record in records:
            self._history.pop(record.id, None)
            self._history[record.id] = record
        while len(self._history) > self._settings.history_limit:
            self._history.popitem(last=False)

    # --------------------------------------------------------------- Helpers

    def _ensure_idle(self) -> None:
        if self._state.is_active:
            raise BusyError()

    def _begin(self, operation_id: str) -> None:
        self._operation_id = operation_id
        self._last_error = None
        self._cancel_source = CancellationTokenSource()
        self._tracker = AssignmentProgressTracker()
        self._progress = self._tracker.start(total=0)
        self._state = OperationState.PLANNING
        self.progress_updates.emit(self._progress)
        self._publish_state()

    def _fail_fatally(self, message: str) -> None:
        self._state = OperationState.FATALLY_FAILED
        self._last_error = message
        self._progress = self._tracker.finish()
        logger.error("Bulk assignment planning failed", error=message)
        self._publish_state()

    def _publish_progress(self, progress: AssignmentProgress) -> None:
        self._progress = progress
        self.progress_updates.emit(progress)
        self._publish_state()

    def _publish_state(self) -> None:
        self.changes.emit(self.snapshot())


__all__ = [
    "AssignmentService",
    "AssignmentServiceSnapshot",
    "AssignmentWriteEvent",
    "BulkAssignmentError",
    "BulkAssignmentReport",
    "OperationState",
    "PlannedTask",
    "SkippedPair",
]
