"""Domain models and the local assignment history sink."""

from .history import AssignmentHistoryStore, AssignmentStatistics
from .models import *  # noqa: F401,F403
from .models import __all__ as _model_exports

__all__ = ["AssignmentHistoryStore", "AssignmentStatistics", *_model_exports]
