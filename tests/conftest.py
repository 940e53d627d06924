"""Shared fixtures for engine tests."""

import asyncio
from datetime import date
from typing import List, Optional

import pytest

from recon_engine.integrations import ScoredMatch, ScoringRequest, ScoringResponse
from recon_engine.models import (
    Bill,
    DocumentType,
    Invoice,
    MatchReason,
    Payment,
    PaymentDirection,
)
from recon_engine.store import InMemoryLedgerStore


class FakeScorer:
    """CandidateScorer double that replays a canned response."""

    def __init__(
        self,
        response: Optional[ScoringResponse] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.response = response or ScoringResponse()
        self.error = error
        self.delay = delay
        self.requests: List[ScoringRequest] = []

    async def score(self, request: ScoringRequest) -> ScoringResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


def scored(source: str, target: str, confidence: float, source_type=DocumentType.BILL) -> ScoredMatch:
    return ScoredMatch(
        source_type=source_type,
        source_id=source,
        target_id=target,
        confidence=confidence,
        reasons=[MatchReason(rule="Exact amount", score=1.0, reason="Exact amount match")],
    )


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def ledger(store):
    """Store seeded with one open bill, one open invoice and a payment for each."""
    store.add_bill(Bill(
        id="bill1",
        counterparty_name="Acme Supplies",
        reference_number="BILL-001",
        issue_date=date(2025, 3, 1),
        due_date=date(2025, 3, 31),
        total_amount_cents=50000,
    ))
    store.add_invoice(Invoice(
        id="inv1",
        counterparty_name="Globex",
        reference_number="INV-001",
        issue_date=date(2025, 3, 2),
        due_date=date(2025, 4, 1),
        total_amount_cents=120000,
    ))
    store.add_payment(Payment(
        id="pay_out",
        direction=PaymentDirection.OUTGOING,
        payment_date=date(2025, 3, 5),
        amount_cents=50000,
        reference_number="BILL-001",
    ))
    store.add_payment(Payment(
        id="pay_in",
        direction=PaymentDirection.INCOMING,
        payment_date=date(2025, 3, 6),
        amount_cents=120000,
        reference_number="INV-001",
    ))
    return store
