"""
Forecast Engine - rolling cash-flow projection.

Each unpaid bill/invoice lands on the horizon day nearest its due date, as
long as that day is within FORECAST_DUE_WINDOW_DAYS of the due date. Rows are
upserted on (forecast_date, period_type), so re-running a horizon overwrites
rather than accumulates.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional

import structlog

from ..config import FORECAST_DUE_WINDOW_DAYS, MISSING_DATA_IMPACT, get_settings
from ..models import (
    AccountingMethod,
    Bill,
    CashFlowForecast,
    Invoice,
    LedgerDocument,
    PeriodType,
)
from ..store import LedgerStore

logger = structlog.get_logger()


def period_start(day: date, period_type: PeriodType) -> date:
    """First day of the week (Monday) or month containing `day`."""
    if period_type == PeriodType.WEEKLY:
        return day - timedelta(days=day.weekday())
    if period_type == PeriodType.MONTHLY:
        return day.replace(day=1)
    return day


def build_risk_factors(missing_invoice_count: int) -> List[Dict[str, int]]:
    if missing_invoice_count <= 0:
        return []
    return [{"factor": "missing_data", "impact": MISSING_DATA_IMPACT * missing_invoice_count}]


class ForecastEngine:
    """Projects daily inflow/outflow for a rolling horizon."""

    def __init__(self, store: LedgerStore):
        self.store = store
        self.settings = get_settings()

    def project(
        self,
        bills: List[Bill],
        invoices: List[Invoice],
        data_completeness: float,
        missing_invoice_count: int = 0,
        horizon_days: Optional[int] = None,
        start: Optional[date] = None,
        accounting_method: AccountingMethod = AccountingMethod.ACCRUAL,
    ) -> List[CashFlowForecast]:
        """
        Build and upsert daily forecast rows.

        Args:
            bills: Bills to project as outflows
            invoices: Invoices to project as inflows
            data_completeness: Completeness score from gap detection, in [0, 1]
            missing_invoice_count: Incoming payments lacking an invoice
            horizon_days: Number of days to project (defaults to settings)
            start: First day of the horizon (defaults to today)
            accounting_method: ACCRUAL projects totals, CASH projects balances

        Returns:
            Forecast rows for days with any projected movement, ascending
        """
        if horizon_days is None:
            horizon_days = self.settings.forecast_horizon_days
        if start is None:
            start = date.today()
        if horizon_days <= 0:
            return []

        end = start + timedelta(days=horizon_days - 1)
        completeness = min(1.0, max(0.0, data_completeness))

        inflow = self._bucket(invoices, start, end, accounting_method)
        outflow = self._bucket(bills, start, end, accounting_method)
        risk_factors = build_risk_factors(missing_invoice_count)

        rows = []
        for offset in range(horizon_days):
            day = start + timedelta(days=offset)
            expected_inflow = inflow.get(day, 0)
            expected_outflow = outflow.get(day, 0)

            if expected_inflow == 0 and expected_outflow == 0:
                continue

            row = CashFlowForecast(
                forecast_date=day,
                period_type=PeriodType.DAILY,
                projected_inflow_cents=expected_inflow,
                projected_outflow_cents=expected_outflow,
                confidence_level=completeness,
                data_completeness_score=completeness,
                risk_factors=list(risk_factors),
            )
            self.store.upsert_cash_flow_forecast(row)
            rows.append(row)

        logger.info(
            "Forecast projected",
            start=start.isoformat(),
            horizon_days=horizon_days,
            rows=len(rows),
            accounting_method=accounting_method.value,
        )
        return rows

    def _bucket(
        self,
        documents: List[LedgerDocument],
        start: date,
        end: date,
        accounting_method: AccountingMethod,
    ) -> Dict[date, int]:
        """Sum open document amounts onto their nearest horizon day."""
        buckets: Dict[date, int] = defaultdict(int)

        for doc in documents:
            if doc.is_paid or doc.due_date is None:
                continue

            nearest = min(max(doc.due_date, start), end)
            if abs((doc.due_date - nearest).days) >= FORECAST_DUE_WINDOW_DAYS:
                continue

            if accounting_method == AccountingMethod.CASH:
                amount = doc.outstanding_cents
            else:
                amount = doc.total_amount_cents
            if amount:
                buckets[nearest] += amount

        return buckets

    def rollup(
        self,
        rows: List[CashFlowForecast],
        period_type: PeriodType,
    ) -> List[CashFlowForecast]:
        """Aggregate daily rows into weekly or monthly rows and upsert them."""
        if period_type == PeriodType.DAILY:
            return list(rows)

        groups: Dict[date, List[CashFlowForecast]] = defaultdict(list)
        for row in rows:
            groups[period_start(row.forecast_date, period_type)].append(row)

        rolled = []
        for key in sorted(groups):
            members = groups[key]
            confidence = sum(r.confidence_level for r in members) / len(members)
            completeness = sum(r.data_completeness_score for r in members) / len(members)

            row = CashFlowForecast(
                forecast_date=key,
                period_type=period_type,
                projected_inflow_cents=sum(r.projected_inflow_cents for r in members),
                projected_outflow_cents=sum(r.projected_outflow_cents for r in members),
                confidence_level=confidence,
                data_completeness_score=completeness,
                risk_factors=list(members[0].risk_factors),
            )
            self.store.upsert_cash_flow_forecast(row)
            rolled.append(row)

        return rolled
