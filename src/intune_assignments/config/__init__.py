"""Configuration helpers for the Intune assignment engine."""

from .settings import (
    DEFAULT_GRAPH_SCOPES,
    AssignmentEngineSettings,
    ConflictPolicy,
    Settings,
    SettingsManager,
)

__all__ = [
    "DEFAULT_GRAPH_SCOPES",
    "AssignmentEngineSettings",
    "ConflictPolicy",
    "Settings",
    "SettingsManager",
]
