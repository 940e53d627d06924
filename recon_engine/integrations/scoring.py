"""
Candidate scoring contract.

A CandidateScorer receives the open bills/invoices and unlinked payments of a
run and returns, per proposed pair, a confidence in [0, 1] with an ordered
explanation trail. The engine owns everything after that: thresholds,
persistence and application.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, runtime_checkable

import structlog

from ..exceptions import ScoringError
from ..models import Bill, DocumentType, Invoice, MatchReason, Payment

logger = structlog.get_logger()


@dataclass
class ScoringRequest:
    """Everything a scorer may look at for one run."""
    bills: List[Bill] = field(default_factory=list)
    invoices: List[Invoice] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    feedback_context: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.payments or not (self.bills or self.invoices)

    def to_payload(self) -> Dict[str, Any]:
        """Compact JSON-friendly summary of the request."""
        return {
            "bills": [
                {
                    "id": b.id,
                    "vendor": b.counterparty_name,
                    "amount": b.total_amount,
                    "date": b.issue_date.isoformat() if b.issue_date else None,
                    "reference": b.reference_number,
                }
                for b in self.bills
            ],
            "invoices": [
                {
                    "id": i.id,
                    "customer": i.counterparty_name,
                    "amount": i.total_amount,
                    "date": i.issue_date.isoformat() if i.issue_date else None,
                    "reference": i.reference_number,
                }
                for i in self.invoices
            ],
            "payments": [
                {
                    "id": p.id,
                    "type": p.direction.value,
                    "amount": p.amount,
                    "date": p.payment_date.isoformat() if p.payment_date else None,
                    "reference": p.reference_number,
                    "bankRef": p.bank_reference,
                }
                for p in self.payments
            ],
            "feedback": self.feedback_context,
        }


@dataclass
class ScoredMatch:
    """One proposed source -> payment pairing."""
    source_type: DocumentType
    source_id: str
    target_id: str
    confidence: float
    reasons: List[MatchReason] = field(default_factory=list)


@dataclass
class ScoringResponse:
    """Scorer output for a run."""
    matches: List[ScoredMatch] = field(default_factory=list)
    insights: str = ""
    warnings: List[str] = field(default_factory=list)


@runtime_checkable
class CandidateScorer(Protocol):
    """Pluggable ranking collaborator."""

    async def score(self, request: ScoringRequest) -> ScoringResponse: ...


def _parse_reason(raw: Any) -> MatchReason:
    if not isinstance(raw, dict):
        raise ValueError("reason is not an object")
    return MatchReason(
        rule=str(raw["rule"]),
        score=float(raw["score"]),
        reason=str(raw.get("reason", "")),
    )


def _parse_match(raw: Any) -> ScoredMatch:
    if not isinstance(raw, dict):
        raise ValueError("match is not an object")

    source_type = DocumentType(raw["source_type"])
    source_id = raw["source_id"]
    target_id = raw["target_id"]
    if not isinstance(source_id, str) or not isinstance(target_id, str):
        raise ValueError("source_id and target_id must be strings")

    confidence = raw["confidence"]
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise ValueError("confidence must be a number")

    return ScoredMatch(
        source_type=source_type,
        source_id=source_id,
        target_id=target_id,
        confidence=float(confidence),
        reasons=[_parse_reason(r) for r in raw.get("reasons") or []],
    )


def parse_scoring_payload(payload: Any) -> ScoringResponse:
    """
    Parse a scorer's JSON payload.

    A payload that is not an object, or whose `matches` is not a list, is
    rejected as a whole. Individual malformed matches are dropped with a
    warning.

    Raises:
        ScoringError: If the payload shape is unusable
    """
    if not isinstance(payload, dict):
        raise ScoringError("Scorer payload is not an object", details=payload)

    raw_matches = payload.get("matches", [])
    if not isinstance(raw_matches, list):
        raise ScoringError("Scorer payload 'matches' is not a list", details=payload)

    warnings = payload.get("warnings") or []
    if not isinstance(warnings, list):
        warnings = [str(warnings)]
    warnings = [str(w) for w in warnings]

    matches = []
    for index, raw in enumerate(raw_matches):
        try:
            matches.append(_parse_match(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Dropping malformed scorer match", index=index, error=str(e))
            warnings.append(f"Dropped malformed match #{index}: {e}")

    insights = payload.get("insights") or ""

    return ScoringResponse(
        matches=matches,
        insights=str(insights),
        warnings=warnings,
    )
