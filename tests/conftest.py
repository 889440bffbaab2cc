from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from intune_assignments.config.settings import AssignmentEngineSettings
from intune_assignments.graph.rate_limiter import RateLimiter
from intune_assignments.services.assignments import AssignmentService
from intune_assignments.utils.logging import LoggingOptions, configure_logging
from tests.factories import make_engine_settings
from tests.stubs import FakeAssignmentGateway, FakeClock


@pytest.fixture(scope="session", autouse=True)
def _file_only_logging(tmp_path_factory: pytest.TempPathFactory) -> Iterator[Path]:
    """Keep test log output out of the user's log directory."""

    log_path = tmp_path_factory.mktemp("logs") / "tests.log"
    yield configure_logging(LoggingOptions(level="DEBUG", console=False, log_path=log_path))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine_settings(tmp_path: Path) -> AssignmentEngineSettings:
    return make_engine_settings(tmp_path)


@pytest.fixture
def rate_limiter(
    engine_settings: AssignmentEngineSettings,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> RateLimiter:
    limiter = RateLimiter.from_settings(engine_settings, sleep=clock.sleep)
    monkeypatch.setattr(limiter, "_now", clock.time)
    return limiter


@pytest.fixture
def gateway() -> FakeAssignmentGateway:
    return FakeAssignmentGateway()


@pytest.fixture
def service(
    gateway: FakeAssignmentGateway,
    rate_limiter: RateLimiter,
    engine_settings: AssignmentEngineSettings,
    clock: FakeClock,
) -> AssignmentService:
    return AssignmentService(gateway, rate_limiter, engine_settings, sleep=clock.sleep)
