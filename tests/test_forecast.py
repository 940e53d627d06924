"""
Tests for the Forecast Engine.
"""

import pytest
from datetime import date

from recon_engine.models import AccountingMethod, Bill, Invoice, PeriodType
from recon_engine.reconciliation.forecast import (
    ForecastEngine,
    build_risk_factors,
    period_start,
)


START = date(2025, 6, 1)


@pytest.fixture
def engine(store):
    return ForecastEngine(store)


class TestProjection:

    def test_invoice_due_on_day_two_yields_one_row(self, engine):
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 2), total_amount_cents=100000)]

        rows = engine.project([], invoices, data_completeness=0.8, horizon_days=3, start=START)

        assert len(rows) == 1
        row = rows[0]
        assert row.forecast_date == date(2025, 6, 2)
        assert row.period_type == PeriodType.DAILY
        assert row.projected_inflow == 1000.0
        assert row.projected_outflow == 0.0
        assert row.net_position == 1000.0
        assert row.confidence_level == pytest.approx(0.8)
        assert row.data_completeness_score == pytest.approx(0.8)

    def test_bills_are_outflows(self, engine):
        bills = [Bill(id="b1", due_date=date(2025, 6, 1), total_amount_cents=25000)]
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 1), total_amount_cents=10000)]

        rows = engine.project(bills, invoices, data_completeness=1.0, horizon_days=3, start=START)

        assert len(rows) == 1
        assert rows[0].projected_outflow_cents == 25000
        assert rows[0].net_position_cents == -15000

    def test_paid_and_undated_documents_are_skipped(self, engine):
        invoices = [
            Invoice(id="paid", due_date=date(2025, 6, 2), total_amount_cents=500, is_paid=True),
            Invoice(id="undated", total_amount_cents=500),
        ]

        rows = engine.project([], invoices, data_completeness=1.0, horizon_days=3, start=START)

        assert rows == []

    def test_due_date_near_horizon_edge_lands_on_last_day(self, engine):
        invoices = [
            Invoice(id="near", due_date=date(2025, 6, 5), total_amount_cents=700),
            Invoice(id="far", due_date=date(2025, 6, 6), total_amount_cents=900),
        ]

        rows = engine.project([], invoices, data_completeness=1.0, horizon_days=3, start=START)

        assert [(r.forecast_date, r.projected_inflow_cents) for r in rows] == [
            (date(2025, 6, 3), 700),
        ]

    def test_each_document_counts_once(self, engine):
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 3), total_amount_cents=1000)]

        rows = engine.project([], invoices, data_completeness=1.0, horizon_days=10, start=START)

        assert sum(r.projected_inflow_cents for r in rows) == 1000

    def test_rerun_overwrites_rows(self, store, engine):
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 2), total_amount_cents=100000)]

        engine.project([], invoices, data_completeness=0.5, horizon_days=3, start=START)
        engine.project([], invoices, data_completeness=0.9, horizon_days=3, start=START)

        stored = store.list_cash_flow_forecasts()
        assert len(stored) == 1
        assert stored[0].confidence_level == pytest.approx(0.9)
        assert stored[0].projected_inflow_cents == 100000

    def test_cash_method_projects_outstanding_balance(self, engine):
        invoices = [Invoice(
            id="i1", due_date=date(2025, 6, 2), total_amount_cents=100000, paid_amount_cents=40000,
        )]

        accrual = engine.project([], invoices, data_completeness=1.0, horizon_days=3, start=START)
        cash = engine.project(
            [], invoices, data_completeness=1.0, horizon_days=3, start=START,
            accounting_method=AccountingMethod.CASH,
        )

        assert accrual[0].projected_inflow_cents == 100000
        assert cash[0].projected_inflow_cents == 60000

    def test_missing_invoices_become_risk_factors(self, engine):
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 2), total_amount_cents=100)]

        rows = engine.project(
            [], invoices, data_completeness=1.0, missing_invoice_count=2,
            horizon_days=3, start=START,
        )

        assert rows[0].risk_factors == [{"factor": "missing_data", "impact": -2000}]

    def test_completeness_is_clamped(self, engine):
        invoices = [Invoice(id="i1", due_date=date(2025, 6, 2), total_amount_cents=100)]

        rows = engine.project([], invoices, data_completeness=1.7, horizon_days=3, start=START)

        assert rows[0].confidence_level == 1.0

    def test_empty_horizon(self, engine):
        invoices = [Invoice(id="i1", due_date=START, total_amount_cents=100)]

        assert engine.project([], invoices, data_completeness=1.0, horizon_days=0, start=START) == []


class TestRollup:

    def test_weekly_rollup_sums_days(self, store, engine):
        invoices = [
            Invoice(id="i1", due_date=date(2025, 6, 2), total_amount_cents=1000),
            Invoice(id="i2", due_date=date(2025, 6, 4), total_amount_cents=3000),
        ]
        bills = [Bill(id="b1", due_date=date(2025, 6, 10), total_amount_cents=500)]

        daily = engine.project(
            bills, invoices, data_completeness=0.6, horizon_days=14, start=date(2025, 6, 2),
        )
        weekly = engine.rollup(daily, PeriodType.WEEKLY)

        assert [(r.forecast_date, r.projected_inflow_cents, r.projected_outflow_cents) for r in weekly] == [
            (date(2025, 6, 2), 4000, 0),
            (date(2025, 6, 9), 0, 500),
        ]
        assert all(r.period_type == PeriodType.WEEKLY for r in weekly)
        assert len(store.list_cash_flow_forecasts(period_type=PeriodType.WEEKLY)) == 2

    def test_daily_rollup_is_identity(self, engine):
        invoices = [Invoice(id="i1", due_date=START, total_amount_cents=100)]
        daily = engine.project([], invoices, data_completeness=1.0, horizon_days=3, start=START)

        assert engine.rollup(daily, PeriodType.DAILY) == daily

    def test_period_start(self):
        assert period_start(date(2025, 6, 5), PeriodType.WEEKLY) == date(2025, 6, 2)
        assert period_start(date(2025, 6, 5), PeriodType.MONTHLY) == date(2025, 6, 1)
        assert period_start(date(2025, 6, 5), PeriodType.DAILY) == date(2025, 6, 5)

    def test_no_risk_factors_without_missing_invoices(self):
        assert build_risk_factors(0) == []
