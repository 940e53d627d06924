"""
Deterministic rule-based candidate scorer.

Each rule scores a (document, payment) pair in [0, 1]; the confidence is the
weighted mean over the rules that apply to the pair, with weight
100 - priority. Only the best payment per document is returned, and only
when it clears the minimum confidence.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog
from rapidfuzz import fuzz

from ..config import get_settings
from ..models import (
    DocumentType,
    LedgerDocument,
    MatchReason,
    Payment,
    PaymentDirection,
)
from .scoring import ScoredMatch, ScoringRequest, ScoringResponse

logger = structlog.get_logger()


@dataclass
class MatchRule:
    """A single weighted matching rule."""
    name: str
    condition_type: str
    priority: int
    params: Dict[str, Any] = field(default_factory=dict)

    @property
    def weight(self) -> int:
        """Lower priority number = higher weight."""
        return 100 - self.priority


def default_rules() -> List[MatchRule]:
    settings = get_settings()
    return [
        MatchRule("Exact amount", "amount_exact", priority=10),
        MatchRule(
            "Amount tolerance",
            "amount_tolerance",
            priority=20,
            params={"tolerance_percent": settings.amount_tolerance_percent},
        ),
        MatchRule(
            "Date proximity",
            "date_range",
            priority=30,
            params={
                "days_before": settings.date_days_before,
                "days_after": settings.date_days_after,
            },
        ),
        MatchRule(
            "Reference match",
            "reference_match",
            priority=40,
            params={
                "partial_match": True,
                "fuzzy_threshold": settings.reference_fuzzy_threshold,
            },
        ),
        MatchRule("Currency match", "currency_match", priority=50),
    ]


class RuleBasedScorer:
    """CandidateScorer that evaluates configurable matching rules locally."""

    def __init__(
        self,
        rules: Optional[List[MatchRule]] = None,
        min_confidence: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.rules = sorted(rules or default_rules(), key=lambda r: r.priority)
        self.min_confidence = (
            min_confidence if min_confidence is not None
            else self.settings.min_confidence_score
        )

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        outgoing = [p for p in request.payments if p.direction == PaymentDirection.OUTGOING]
        incoming = [p for p in request.payments if p.direction == PaymentDirection.INCOMING]

        matches: List[ScoredMatch] = []
        evaluated = 0

        for source_type, documents, payments in (
            (DocumentType.BILL, request.bills, outgoing),
            (DocumentType.INVOICE, request.invoices, incoming),
        ):
            for doc in documents:
                best: Optional[Tuple[float, Payment, List[MatchReason]]] = None
                for payment in payments:
                    evaluated += 1
                    confidence, reasons = self.evaluate(doc, payment)
                    if confidence < self.min_confidence:
                        continue
                    if best is None or confidence > best[0]:
                        best = (confidence, payment, reasons)

                if best is not None:
                    matches.append(ScoredMatch(
                        source_type=source_type,
                        source_id=doc.id,
                        target_id=best[1].id,
                        confidence=best[0],
                        reasons=best[2],
                    ))

        logger.info(
            "Rule-based scoring complete",
            evaluated=evaluated,
            matches=len(matches),
        )

        return ScoringResponse(
            matches=matches,
            insights=(
                f"Evaluated {evaluated} candidate pairs; {len(matches)} at or above "
                f"{self.min_confidence:.0%} confidence"
            ),
        )

    def evaluate(
        self,
        document: LedgerDocument,
        payment: Payment,
    ) -> Tuple[float, List[MatchReason]]:
        """Confidence for a single pair plus the reasons that scored."""
        reasons: List[MatchReason] = []
        total_weight = 0
        weighted_score = 0.0

        for rule in self.rules:
            result = self._apply(rule, document, payment)
            if result is None:
                continue
            score, reason = result
            total_weight += rule.weight
            weighted_score += score * rule.weight
            if score > 0:
                reasons.append(MatchReason(rule=rule.name, score=round(score, 4), reason=reason))

        if total_weight == 0:
            return 0.0, reasons
        return weighted_score / total_weight, reasons

    def _apply(
        self,
        rule: MatchRule,
        document: LedgerDocument,
        payment: Payment,
    ) -> Optional[Tuple[float, str]]:
        """Score one rule; None when the rule cannot judge this pair."""
        if rule.condition_type == "amount_exact":
            if abs(document.total_amount_cents - payment.amount_cents) < 1:
                return 1.0, "Exact amount match"
            return 0.0, ""

        if rule.condition_type == "amount_tolerance":
            tolerance_percent = rule.params.get("tolerance_percent", 2)
            max_diff = document.total_amount_cents * tolerance_percent / 100
            diff = abs(document.total_amount_cents - payment.amount_cents)
            if max_diff <= 0:
                return (1.0, "Exact amount match") if diff == 0 else (0.0, "")
            if diff <= max_diff:
                return 1 - diff / max_diff, f"Within {tolerance_percent:g}% tolerance"
            return 0.0, ""

        if rule.condition_type == "date_range":
            if document.issue_date is None or payment.payment_date is None:
                return None
            diff_days = abs((payment.payment_date - document.issue_date).days)
            max_days = max(rule.params.get("days_before", 7), rule.params.get("days_after", 3))
            if diff_days <= max_days:
                return 1 - diff_days / max_days, f"Date within {diff_days} days"
            return 0.0, ""

        if rule.condition_type == "reference_match":
            source_ref = (document.reference_number or "").strip().lower()
            target_ref = (payment.reference_number or payment.bank_reference or "").strip().lower()
            if not source_ref or not target_ref:
                return None
            if source_ref == target_ref:
                return 1.0, "Exact reference match"
            if rule.params.get("partial_match") and (
                source_ref in target_ref or target_ref in source_ref
            ):
                return 0.8, "Partial reference match"
            threshold = rule.params.get("fuzzy_threshold")
            if threshold is not None and fuzz.ratio(source_ref, target_ref) >= threshold:
                return 0.6, "Similar reference"
            return 0.0, ""

        if rule.condition_type == "currency_match":
            source_currency = document.currency or self.settings.default_currency
            target_currency = payment.currency or self.settings.default_currency
            if source_currency == target_currency:
                return 1.0, f"Currency match ({source_currency})"
            return 0.0, ""

        logger.warning("Unknown rule condition", rule=rule.name, condition_type=rule.condition_type)
        return None
