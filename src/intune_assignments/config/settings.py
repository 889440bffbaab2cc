from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv
from platformdirs import user_cache_dir, user_config_dir

APP_NAME = "IntuneAssignments"
ENV_PREFIX = "INTUNE_ASSIGNMENTS_"
ENV_FILE_NAME = "settings.env"
HISTORY_FILE_NAME = "assignment_history.json"

DEFAULT_GRAPH_SCOPES: tuple[str, ...] = (
    "https://graph.microsoft.com/DeviceManagementApps.Read.All",
    "https://graph.microsoft.com/DeviceManagementApps.ReadWrite.All",
    "https://graph.microsoft.com/Group.Read.All",
)


def _config_dir() -> Path:
    path = Path(user_config_dir(APP_NAME, roaming=True))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _cache_dir() -> Path:
    path = Path(user_cache_dir(APP_NAME))
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_dir() -> Path:
    return _config_dir()


def cache_dir() -> Path:
    return _cache_dir()


def log_dir() -> Path:
    path = cache_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _env_file_path(explicit: Path | None) -> Path:
    if explicit is not None:
        return explicit
    return _config_dir() / ENV_FILE_NAME


class ConflictPolicy(StrEnum):
    """How planning treats a pair that already targets the group with another intent."""

    OVERWRITE = "overwrite"
    SKIP = "skip"


@dataclass(slots=True)
class Settings:
    """Tenant/app registration data the token provider and Graph client need."""

    tenant_id: str | None = None
    client_id: str | None = None
    authority: str | None = None
    graph_scopes: list[str] = field(default_factory=lambda: list(DEFAULT_GRAPH_SCOPES))

    def configured_scopes(self) -> Iterable[str]:
        """Return deduplicated scopes preserving order (includes new defaults)."""

        merged: list[str] = list(self.graph_scopes) + [
            scope for scope in DEFAULT_GRAPH_SCOPES if scope not in self.graph_scopes
        ]
        seen = set[str]()
        for scope in merged:
            if scope and scope not in seen:
                seen.add(scope)
                yield scope

    @property
    def is_configured(self) -> bool:
        return bool(self.tenant_id and self.client_id)

    def derive_authority(self) -> str:
        if self.authority:
            return self.authority
        tenant = self.tenant_id or "common"
        return f"https://login.microsoftonline.com/{tenant}"


@dataclass(slots=True)
class AssignmentEngineSettings:
    """Tunables for bulk assignment planning and execution.

    Rate limit defaults follow the Intune per-tenant quotas: 100 writes and
    1000 requests in any 20 second window.
    """

    max_write_requests_per_window: int = 100
    max_total_requests_per_window: int = 1000
    window_seconds: float = 20.0
    base_retry_delay: float = 1.0
    max_retry_delay: float = 32.0
    max_concurrent_writes: int = 3
    max_attempts: int = 3
    write_timeout: float = 60.0
    conflict_policy: ConflictPolicy = ConflictPolicy.OVERWRITE
    refresh_after_write: bool = False
    history_limit: int = 1000
    history_path: Path = field(default_factory=lambda: _cache_dir() / HISTORY_FILE_NAME)

    def __post_init__(self) -> None:
        if self.max_concurrent_writes < 1:
            raise ValueError("max_concurrent_writes must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.write_timeout <= 0:
            raise ValueError("write_timeout must be positive")
        self.conflict_policy = ConflictPolicy(self.conflict_policy)


class SettingsManager:
    """Load and persist settings with environment overrides."""

    def __init__(self, env_file: Path | None = None) -> None:
        self._env_file = _env_file_path(env_file)

    @property
    def env_file(self) -> Path:
        return self._env_file

    def load(self) -> Settings:
        """Load settings from environment, falling back to persisted file."""
        load_dotenv(self._env_file, override=False)

        settings = Settings(
            tenant_id=self._get_env("TENANT_ID"),
            client_id=self._get_env("CLIENT_ID"),
            authority=self._get_env("AUTHORITY"),
        )
        scopes = self._get_scopes_from_env()
        if scopes:
            settings.graph_scopes = scopes
        return settings

    def load_engine(self) -> AssignmentEngineSettings:
        """Load engine tunables; unset or malformed values keep their defaults."""
        load_dotenv(self._env_file, override=False)

        engine = AssignmentEngineSettings()
        for name, caster in (
            ("max_write_requests_per_window", int),
            ("max_total_requests_per_window", int),
            ("window_seconds", float),
            ("base_retry_delay", float),
            ("max_retry_delay", float),
            ("max_concurrent_writes", int),
            ("max_attempts", int),
            ("write_timeout", float),
            ("history_limit", int),
        ):
            raw = self._get_env(name.upper())
            if raw is None:
                continue
            try:
                setattr(engine, name, caster(raw))
            except ValueError:
                continue

        policy = self._get_env("CONFLICT_POLICY")
        if policy:
            try:
                engine.conflict_policy = ConflictPolicy(policy.lower())
            except ValueError:
                pass
        refresh = self._get_env("REFRESH_AFTER_WRITE")
        if refresh is not None:
            engine.refresh_after_write = refresh.strip().lower() in {"1", "true", "yes", "on"}
        history_path = self._get_env("HISTORY_PATH")
        if history_path:
            engine.history_path = Path(history_path).expanduser()
        return engine

    def save(
        self,
        settings: Settings,
        engine: AssignmentEngineSettings | None = None,
    ) -> None:
        """Persist configuration fields to the managed env file."""
        self._env_file.parent.mkdir(parents=True, exist_ok=True)
        content = [
            f"{ENV_PREFIX}TENANT_ID={settings.tenant_id or ''}",
            f"{ENV_PREFIX}CLIENT_ID={settings.client_id or ''}",
            f"{ENV_PREFIX}AUTHORITY={settings.authority or ''}",
            f"{ENV_PREFIX}SCOPES={';'.join(settings.configured_scopes())}",
        ]
        if engine is not None:
            content.extend(
                [
                    f"{ENV_PREFIX}MAX_WRITE_REQUESTS_PER_WINDOW={engine.max_write_requests_per_window}",
                    f"{ENV_PREFIX}MAX_TOTAL_REQUESTS_PER_WINDOW={engine.max_total_requests_per_window}",
                    f"{ENV_PREFIX}WINDOW_SECONDS={engine.window_seconds}",
                    f"{ENV_PREFIX}MAX_CONCURRENT_WRITES={engine.max_concurrent_writes}",
                    f"{ENV_PREFIX}MAX_ATTEMPTS={engine.max_attempts}",
                    f"{ENV_PREFIX}WRITE_TIMEOUT={engine.write_timeout}",
                    f"{ENV_PREFIX}CONFLICT_POLICY={engine.conflict_policy.value}",
                    f"{ENV_PREFIX}REFRESH_AFTER_WRITE={str(engine.refresh_after_write).lower()}",
                    f"{ENV_PREFIX}HISTORY_LIMIT={engine.history_limit}",
                    f"{ENV_PREFIX}HISTORY_PATH={engine.history_path}",
                ]
            )
        self._env_file.write_text("\n".join(content) + "\n", encoding="utf-8")

    def _get_env(self, name: str) -> str | None:
        return os.getenv(f"{ENV_PREFIX}{name}") or None

    def _get_scopes_from_env(self) -> list[str] | None:
        raw = self._get_env("SCOPES")
        if not raw:
            return None
        scopes = [scope.strip() for scope in raw.split(";") if scope.strip()]
        return scopes or None


__all__ = [
    "DEFAULT_GRAPH_SCOPES",
    "AssignmentEngineSettings",
    "ConflictPolicy",
    "Settings",
    "SettingsManager",
    "cache_dir",
    "config_dir",
    "log_dir",
]
