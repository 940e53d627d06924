"""Candidate scorers consulted by the match suggester."""

from .scoring import (
    CandidateScorer,
    ScoredMatch,
    ScoringRequest,
    ScoringResponse,
    parse_scoring_payload,
)
from .ai_gateway import AIGatewayScorer
from .rule_scorer import MatchRule, RuleBasedScorer

__all__ = [
    "CandidateScorer",
    "ScoredMatch",
    "ScoringRequest",
    "ScoringResponse",
    "parse_scoring_payload",
    "AIGatewayScorer",
    "MatchRule",
    "RuleBasedScorer",
    "build_scorer",
]


def build_scorer() -> CandidateScorer:
    """Scorer selected by settings.scorer_backend."""
    from ..config import get_settings

    if get_settings().uses_ai_gateway:
        return AIGatewayScorer()
    return RuleBasedScorer()
