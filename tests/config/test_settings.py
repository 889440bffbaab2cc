from __future__ import annotations

import os
from pathlib import Path

import pytest

from intune_assignments.config.settings import (
    DEFAULT_GRAPH_SCOPES,
    AssignmentEngineSettings,
    ConflictPolicy,
    Settings,
    SettingsManager,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # load_dotenv writes straight into os.environ.
    monkeypatch.setattr(os, "environ", dict(os.environ))
    for key in list(os.environ):
        if key.startswith("INTUNE_ASSIGNMENTS_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))


def test_engine_defaults_follow_intune_quotas(tmp_path: Path) -> None:
    engine = AssignmentEngineSettings(history_path=tmp_path / "history.json")

    assert engine.max_write_requests_per_window == 100
    assert engine.max_total_requests_per_window == 1000
    assert engine.window_seconds == 20.0
    assert engine.max_concurrent_writes == 3
    assert engine.conflict_policy is ConflictPolicy.OVERWRITE


@pytest.mark.parametrize(
    "overrides",
    [
        {"max_concurrent_writes": 0},
        {"max_attempts": 0},
        {"write_timeout": 0},
        {"conflict_policy": "merge"},
    ],
)
def test_engine_settings_reject_invalid_values(tmp_path: Path, overrides: dict) -> None:
    with pytest.raises(ValueError):
        AssignmentEngineSettings(history_path=tmp_path / "history.json", **overrides)


def test_load_engine_applies_environment_overrides(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("INTUNE_ASSIGNMENTS_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("INTUNE_ASSIGNMENTS_WINDOW_SECONDS", "not-a-number")
    monkeypatch.setenv("INTUNE_ASSIGNMENTS_CONFLICT_POLICY", "SKIP")
    monkeypatch.setenv("INTUNE_ASSIGNMENTS_REFRESH_AFTER_WRITE", "yes")
    monkeypatch.setenv("INTUNE_ASSIGNMENTS_HISTORY_PATH", str(tmp_path / "h.json"))
    manager = SettingsManager(env_file=tmp_path / "missing.env")

    engine = manager.load_engine()

    assert engine.max_attempts == 5
    assert engine.window_seconds == 20.0
    assert engine.conflict_policy is ConflictPolicy.SKIP
    assert engine.refresh_after_write is True
    assert engine.history_path == tmp_path / "h.json"


def test_save_then_load_round_trip(tmp_path: Path) -> None:
    manager = SettingsManager(env_file=tmp_path / "settings.env")
    engine = AssignmentEngineSettings(
        max_concurrent_writes=5,
        write_timeout=15.0,
        conflict_policy=ConflictPolicy.SKIP,
        history_path=tmp_path / "history.json",
    )

    manager.save(Settings(tenant_id="contoso", client_id="client-1"), engine)
    settings = manager.load()
    loaded = manager.load_engine()

    assert settings.tenant_id == "contoso"
    assert settings.client_id == "client-1"
    assert settings.authority is None
    assert settings.graph_scopes == list(DEFAULT_GRAPH_SCOPES)
    assert loaded.max_concurrent_writes == 5
    assert loaded.write_timeout == 15.0
    assert loaded.conflict_policy is ConflictPolicy.SKIP
    assert loaded.history_path == tmp_path / "history.json"


def test_configured_scopes_merge_defaults_without_duplicates() -> None:
    settings = Settings(graph_scopes=["custom", DEFAULT_GRAPH_SCOPES[0], "custom"])

    scopes = list(settings.configured_scopes())

    assert scopes[0] == "custom"
    assert scopes.count("custom") == 1
    assert set(DEFAULT_GRAPH_SCOPES) <= set(scopes)


def test_authority_defaults_to_tenant() -> None:
    assert Settings(tenant_id="contoso").derive_authority() == (
        "https://login.microsoftonline.com/contoso"
    )
    assert Settings().derive_authority().endswith("/common")
    assert not Settings(tenant_id="contoso").is_configured
