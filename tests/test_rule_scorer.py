"""
Tests for the rule-based candidate scorer.
"""

import pytest
from datetime import date

from recon_engine.integrations import MatchRule, RuleBasedScorer, ScoringRequest
from recon_engine.models import Bill, DocumentType, Invoice, Payment, PaymentDirection


@pytest.fixture
def scorer():
    return RuleBasedScorer()


class TestEvaluate:

    def test_exact_pair_scores_one(self, scorer):
        bill = Bill(issue_date=date(2025, 3, 1), total_amount_cents=50000)
        payment = Payment(payment_date=date(2025, 3, 1), amount_cents=50000)

        confidence, reasons = scorer.evaluate(bill, payment)

        assert confidence == pytest.approx(1.0)
        assert [r.rule for r in reasons] == [
            "Exact amount", "Amount tolerance", "Date proximity", "Currency match",
        ]

    def test_missing_dates_do_not_penalize(self, scorer):
        bill = Bill(total_amount_cents=50000)
        payment = Payment(amount_cents=50000)

        confidence, _ = scorer.evaluate(bill, payment)

        assert confidence == pytest.approx(1.0)

    def test_amount_far_off_scores_low(self, scorer):
        bill = Bill(issue_date=date(2025, 3, 1), total_amount_cents=50000)
        payment = Payment(payment_date=date(2025, 3, 1), amount_cents=45000)

        confidence, _ = scorer.evaluate(bill, payment)

        # Only date (70) and currency (50) score out of 290
        assert confidence == pytest.approx(120 / 290)

    def test_currency_alone_is_not_enough(self, scorer):
        bill = Bill(total_amount_cents=100)
        payment = Payment(amount_cents=900)

        confidence, _ = scorer.evaluate(bill, payment)

        assert confidence < scorer.min_confidence

    @pytest.mark.parametrize("source,target,expected", [
        ("INV-001", "inv-001", "Exact reference match"),
        ("INV-001", "Payment INV-001 March", "Partial reference match"),
        ("INV-2025-0042", "INV-2025-0043", "Similar reference"),
    ])
    def test_reference_rules(self, scorer, source, target, expected):
        invoice = Invoice(total_amount_cents=100, reference_number=source)
        payment = Payment(
            direction=PaymentDirection.INCOMING, amount_cents=100, reference_number=target,
        )

        _, reasons = scorer.evaluate(invoice, payment)

        assert expected in [r.reason for r in reasons]

    def test_bank_reference_is_a_fallback(self, scorer):
        bill = Bill(total_amount_cents=100, reference_number="PO-77")
        payment = Payment(amount_cents=100, bank_reference="PO-77")

        _, reasons = scorer.evaluate(bill, payment)

        assert "Exact reference match" in [r.reason for r in reasons]

    def test_weight_from_priority(self):
        assert MatchRule("x", "amount_exact", priority=10).weight == 90


class TestScore:

    @pytest.mark.asyncio
    async def test_best_payment_per_document(self, scorer):
        bill = Bill(id="b1", issue_date=date(2025, 3, 1), total_amount_cents=50000)
        close = Payment(id="close", payment_date=date(2025, 3, 4), amount_cents=50000)
        exact = Payment(id="exact", payment_date=date(2025, 3, 1), amount_cents=50000)

        response = await scorer.score(ScoringRequest(bills=[bill], payments=[close, exact]))

        assert len(response.matches) == 1
        match = response.matches[0]
        assert match.source_type == DocumentType.BILL
        assert match.source_id == "b1"
        assert match.target_id == "exact"
        assert match.confidence == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_directions_are_respected(self, scorer):
        bill = Bill(id="b1", total_amount_cents=50000)
        invoice = Invoice(id="i1", total_amount_cents=70000)
        incoming = Payment(id="in", direction=PaymentDirection.INCOMING, amount_cents=50000)

        response = await scorer.score(ScoringRequest(
            bills=[bill], invoices=[invoice], payments=[incoming],
        ))

        assert response.matches == []

    @pytest.mark.asyncio
    async def test_below_minimum_is_dropped(self):
        scorer = RuleBasedScorer(min_confidence=0.99)
        bill = Bill(id="b1", issue_date=date(2025, 3, 1), total_amount_cents=50000)
        payment = Payment(id="p1", payment_date=date(2025, 3, 3), amount_cents=50000)

        response = await scorer.score(ScoringRequest(bills=[bill], payments=[payment]))

        assert response.matches == []
        assert "Evaluated 1 candidate pairs" in response.insights
