"""
Match Suggester - scorer-driven bill/invoice to payment matching.

Builds the candidate universe for a run, asks the configured CandidateScorer
to rank it, persists every usable match as an AISuggestion and applies the
ones at or above AUTO_MATCH_THRESHOLD. The scorer never decides policy; it
only supplies confidences and reasons.
"""

import asyncio
from dataclasses import replace
from typing import Dict, List, Optional, Set

import structlog

from ..config import AUTO_MATCH_THRESHOLD, get_settings
from ..exceptions import InvariantViolation, LedgerStoreError, SuggestionStateError
from ..integrations import CandidateScorer, ScoredMatch, ScoringRequest, ScoringResponse
from ..models import (
    AISuggestion,
    AuditAction,
    AuditEntry,
    DocumentType,
    FeedbackType,
    LedgerDocument,
    MatchReport,
    Payment,
    PaymentDirection,
    ReconciliationScope,
    RunStage,
    SkippedCandidate,
    SuggestionFeedback,
    SuggestionStatus,
    SuggestionType,
    utc_now,
)
from ..store import LedgerStore

logger = structlog.get_logger()


def suggestion_type_for(source_type: DocumentType) -> SuggestionType:
    if source_type == DocumentType.BILL:
        return SuggestionType.BILL_PAYMENT
    return SuggestionType.INVOICE_RECEIPT


class MatchSuggester:
    """
    Turns scorer output into persisted suggestions and applied matches.

    Invariants held here:
    - a payment is never linked to both a bill and an invoice
    - within one run a payment or document is consumed by at most one
      auto-match; later high-confidence claims on it stay pending
    - link and mark-paid are applied as one store operation
    """

    def __init__(
        self,
        store: LedgerStore,
        scorer: CandidateScorer,
        timeout_seconds: Optional[float] = None,
    ):
        self.store = store
        self.scorer = scorer
        self.settings = get_settings()
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None
            else self.settings.scorer_timeout_seconds
        )

    def build_request(
        self,
        scope: ReconciliationScope = ReconciliationScope.ALL,
        feedback: Optional[List[SuggestionFeedback]] = None,
    ) -> ScoringRequest:
        """Snapshot the open documents and unlinked payments for this scope."""
        bills = []
        invoices = []
        directions = set()

        if scope.includes_payable:
            bills = [b for b in self.store.list_bills() if not b.is_paid]
            directions.add(PaymentDirection.OUTGOING)
        if scope.includes_receivable:
            invoices = [i for i in self.store.list_invoices() if not i.is_paid]
            directions.add(PaymentDirection.INCOMING)

        payments = [
            p for p in self.store.list_payments()
            if not p.is_linked and p.direction in directions
        ]

        if feedback is None:
            feedback = self.store.list_feedback(limit=self.settings.max_feedback_items)
        else:
            feedback = feedback[-self.settings.max_feedback_items:]

        return ScoringRequest(
            bills=bills[:self.settings.max_bills_per_run],
            invoices=invoices[:self.settings.max_invoices_per_run],
            payments=payments[:self.settings.max_payments_per_run],
            feedback_context=[f.as_context_line() for f in feedback],
        )

    async def suggest(
        self,
        scope: ReconciliationScope = ReconciliationScope.ALL,
        feedback: Optional[List[SuggestionFeedback]] = None,
    ) -> MatchReport:
        """
        Run one suggestion pass.

        Args:
            scope: Which side of the ledger to match
            feedback: Prior review decisions; read from the store when None

        Returns:
            MatchReport with counts, scorer insights and warnings
        """
        report = MatchReport()
        request = self.build_request(scope, feedback)

        logger.info(
            "Starting match suggestion",
            scope=scope.value,
            bills=len(request.bills),
            invoices=len(request.invoices),
            payments=len(request.payments),
        )

        if request.is_empty:
            report.insights = "No unmatched records to pair"
            return report

        response = await self._score(request, report)
        report.insights = response.insights
        report.warnings.extend(response.warnings)

        documents: Dict[DocumentType, Dict[str, LedgerDocument]] = {
            DocumentType.BILL: {b.id: b for b in request.bills},
            DocumentType.INVOICE: {i.id: i for i in request.invoices},
        }
        payments = {p.id: p for p in request.payments}

        seen_pairs: Set[tuple] = set()
        consumed_documents: Set[tuple] = set()
        consumed_payments: Set[str] = set()

        for match in response.matches:
            rejection = self._validate(match, documents, payments, seen_pairs)
            if rejection:
                self._skip(report, match, rejection)
                continue
            seen_pairs.add((match.source_type, match.source_id, match.target_id))

            status = SuggestionStatus.PENDING
            if match.confidence >= AUTO_MATCH_THRESHOLD:
                document_key = (match.source_type, match.source_id)
                if document_key in consumed_documents or match.target_id in consumed_payments:
                    report.warnings.append(
                        f"{match.source_type.value} {match.source_id} -> payment "
                        f"{match.target_id} held for review: already matched this run"
                    )
                elif self._apply(match, report):
                    status = SuggestionStatus.AUTO_MATCHED
                    consumed_documents.add(document_key)
                    consumed_payments.add(match.target_id)

            suggestion = AISuggestion(
                suggestion_type=suggestion_type_for(match.source_type),
                source_type=match.source_type,
                source_id=match.source_id,
                target_type="payment",
                target_id=match.target_id,
                confidence_score=match.confidence,
                match_reasons=list(match.reasons),
                status=status,
            )

            try:
                self.store.insert_ai_suggestion(suggestion)
            except LedgerStoreError as e:
                logger.error(
                    "Failed to persist suggestion",
                    source_id=match.source_id,
                    target_id=match.target_id,
                    error=str(e),
                )
                if status == SuggestionStatus.AUTO_MATCHED:
                    self._compensate(match, report)
                    consumed_documents.discard((match.source_type, match.source_id))
                    consumed_payments.discard(match.target_id)
                self._skip(report, match, f"Could not persist suggestion: {e}")
                continue

            report.total_matches += 1
            report.suggestion_ids.append(suggestion.id)
            if status == SuggestionStatus.AUTO_MATCHED:
                report.auto_matched += 1
            else:
                report.needs_review += 1

            report.audit_entries.append(AuditEntry(
                action=AuditAction.SUGGESTION_CREATED,
                entity_ids=[match.source_id, match.target_id],
                stage=RunStage.MATCH_SUGGESTION,
                message=(
                    f"Suggested {match.source_type.value} {match.source_id} -> "
                    f"payment {match.target_id} ({status.value})"
                ),
                details={"confidence": match.confidence, "status": status.value},
            ))

        logger.info(
            "Match suggestion complete",
            total=report.total_matches,
            auto_matched=report.auto_matched,
            needs_review=report.needs_review,
            skipped=len(report.skipped),
        )
        return report

    async def _score(self, request: ScoringRequest, report: MatchReport) -> ScoringResponse:
        """Call the scorer under a timeout; any failure means no suggestions."""
        try:
            return await asyncio.wait_for(
                self.scorer.score(request),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            message = f"Candidate scorer timed out after {self.timeout_seconds:g}s"
        except Exception as e:
            message = f"Candidate scorer failed: {e}"

        logger.warning("Scoring degraded to no suggestions", reason=message)
        report.warnings.append(message)
        report.audit_entries.append(AuditEntry(
            action=AuditAction.SCORER_FAILED,
            stage=RunStage.MATCH_SUGGESTION,
            message=message,
            success=False,
            error_message=message,
        ))
        return ScoringResponse()

    def _validate(
        self,
        match: ScoredMatch,
        documents: Dict[DocumentType, Dict[str, LedgerDocument]],
        payments: Dict[str, Payment],
        seen_pairs: Set[tuple],
    ) -> Optional[str]:
        """Reason to reject a scorer match, or None when it is usable."""
        if not 0.0 <= match.confidence <= 1.0:
            return f"Confidence {match.confidence} outside [0, 1]"
        if match.source_id not in documents[match.source_type]:
            return f"Unknown or already settled {match.source_type.value}"
        payment = payments.get(match.target_id)
        if payment is None:
            return "Unknown or already linked payment"
        if payment.settles != match.source_type:
            return (
                f"{payment.direction.value} payment cannot settle a "
                f"{match.source_type.value}"
            )
        if (match.source_type, match.source_id, match.target_id) in seen_pairs:
            return "Duplicate pair in scorer response"
        return None

    def _apply(self, match: ScoredMatch, report: MatchReport) -> bool:
        try:
            self.store.apply_match(
                match.source_type,
                match.source_id,
                match.target_id,
                paid_at=utc_now(),
            )
        except (InvariantViolation, LedgerStoreError) as e:
            logger.warning(
                "Auto-match not applied",
                source_type=match.source_type.value,
                source_id=match.source_id,
                payment_id=match.target_id,
                error=str(e),
            )
            report.warnings.append(
                f"Auto-match {match.source_id} -> {match.target_id} not applied: {e}"
            )
            return False

        report.audit_entries.append(AuditEntry(
            action=AuditAction.MATCH_APPLIED,
            entity_ids=[match.source_id, match.target_id],
            stage=RunStage.MATCH_SUGGESTION,
            message=f"Auto-matched {match.source_type.value} {match.source_id}",
            details={"confidence": match.confidence},
        ))
        return True

    def _compensate(self, match: ScoredMatch, report: MatchReport) -> None:
        """Roll back an applied match whose suggestion could not be stored."""
        try:
            self.store.unapply_match(match.source_type, match.source_id, match.target_id)
        except (InvariantViolation, LedgerStoreError) as e:
            logger.error(
                "Failed to roll back auto-match",
                source_id=match.source_id,
                payment_id=match.target_id,
                error=str(e),
            )
            report.warnings.append(
                f"Auto-match {match.source_id} -> {match.target_id} applied without a "
                f"suggestion record: {e}"
            )
            return

        report.audit_entries.append(AuditEntry(
            action=AuditAction.MATCH_REVERSED,
            entity_ids=[match.source_id, match.target_id],
            stage=RunStage.MATCH_SUGGESTION,
            message="Rolled back auto-match after suggestion write failure",
        ))

    def _skip(self, report: MatchReport, match: ScoredMatch, reason: str) -> None:
        logger.info(
            "Skipping candidate",
            source_id=match.source_id,
            target_id=match.target_id,
            reason=reason,
        )
        report.skipped.append(SkippedCandidate(
            source_id=match.source_id,
            target_id=match.target_id,
            reason=reason,
        ))
        report.audit_entries.append(AuditEntry(
            action=AuditAction.SUGGESTION_SKIPPED,
            entity_ids=[match.source_id, match.target_id],
            stage=RunStage.MATCH_SUGGESTION,
            message=reason,
            success=False,
        ))

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review(
        self,
        suggestion_id: str,
        approve: bool,
        notes: Optional[str] = None,
    ) -> AISuggestion:
        """
        Approve or reject a pending suggestion.

        Approval applies the match; if the ledger has moved on (payment
        already linked, document already paid) the InvariantViolation is
        raised and the suggestion stays pending. If the review cannot be
        recorded the applied match is rolled back before the error propagates.

        Raises:
            SuggestionStateError: If the suggestion is not pending
            InvariantViolation: If the match can no longer be applied
        """
        suggestion = self.store.get_suggestion(suggestion_id)
        if suggestion.status != SuggestionStatus.PENDING:
            raise SuggestionStateError(
                f"Suggestion {suggestion_id} is {suggestion.status.value}, not pending"
            )

        if approve:
            self.store.apply_match(
                suggestion.source_type,
                suggestion.source_id,
                suggestion.target_id,
                paid_at=utc_now(),
            )

        reviewed = replace(
            suggestion,
            status=SuggestionStatus.APPROVED if approve else SuggestionStatus.REJECTED,
            reviewed_at=utc_now(),
            review_notes=notes,
        )
        try:
            self.store.update_suggestion(reviewed)
            self.store.insert_feedback(SuggestionFeedback(
                suggestion_id=suggestion.id,
                feedback_type=FeedbackType.ACCEPTED if approve else FeedbackType.REJECTED,
                reason=notes,
                original_confidence=suggestion.confidence_score,
            ))
        except LedgerStoreError as e:
            logger.error(
                "Failed to record review",
                suggestion_id=suggestion_id,
                error=str(e),
            )
            self._rollback_review(suggestion, approve)
            raise

        logger.info(
            "Suggestion reviewed",
            suggestion_id=suggestion_id,
            status=reviewed.status.value,
        )
        return reviewed

    def _rollback_review(self, pending: AISuggestion, approved: bool) -> None:
        """Undo the ledger side of a review and put the suggestion back to pending."""
        if approved:
            try:
                self.store.unapply_match(
                    pending.source_type, pending.source_id, pending.target_id,
                )
            except (InvariantViolation, LedgerStoreError) as e:
                logger.error(
                    "Failed to roll back approved match",
                    suggestion_id=pending.id,
                    error=str(e),
                )
        try:
            self.store.update_suggestion(pending)
        except LedgerStoreError as e:
            logger.error(
                "Failed to restore pending suggestion",
                suggestion_id=pending.id,
                error=str(e),
            )

    def reverse(self, suggestion_id: str, notes: Optional[str] = None) -> AISuggestion:
        """
        Undo an applied suggestion and return it to pending.

        Raises:
            SuggestionStateError: If the suggestion is not applied
        """
        suggestion = self.store.get_suggestion(suggestion_id)
        if not suggestion.is_applied:
            raise SuggestionStateError(
                f"Suggestion {suggestion_id} is {suggestion.status.value}; only "
                "approved or auto-matched suggestions can be reversed"
            )

        self.store.unapply_match(
            suggestion.source_type,
            suggestion.source_id,
            suggestion.target_id,
        )
        suggestion.status = SuggestionStatus.PENDING
        suggestion.reviewed_at = utc_now()
        suggestion.review_notes = notes or "Reversed"
        self.store.update_suggestion(suggestion)

        logger.info("Suggestion reversed", suggestion_id=suggestion_id)
        return suggestion
