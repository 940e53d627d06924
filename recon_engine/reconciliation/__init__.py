"""Reconciliation engine components."""

from .gap_detector import GapDetector
from .forecast import ForecastEngine
from .match_suggester import MatchSuggester
from .status import StatusReconciler
from .orchestrator import ReconciliationOrchestrator

__all__ = [
    "GapDetector",
    "ForecastEngine",
    "MatchSuggester",
    "StatusReconciler",
    "ReconciliationOrchestrator",
]
