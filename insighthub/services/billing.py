"""
services/billing.py
-------------------
Usage metering and simulated invoicing. Payments are recorded locally; no
payment provider is contacted.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from insighthub.core.constants import PRICING
from insighthub.core.logging import get_logger
from insighthub.models.billing import Invoice, UsageRecord
from insighthub.models.user import Organization

logger = get_logger(__name__)

COST_PER_UNIT = {
    "api_calls": 0.0001,
    "events_ingested": 0.001,
    "storage_mb": 0.01,
    "export_rows": 0.00001,
}

USAGE_PERIODS = {"week": timedelta(days=7), "month": timedelta(days=30), "year": timedelta(days=365)}


def month_bounds(now: Optional[datetime] = None) -> tuple:
    now = now or datetime.utcnow()
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = (start + timedelta(days=32)).replace(day=1)
    return start, end


def record_usage(db: Session, organization_id: int, metric: str, value: float,
                 now: Optional[datetime] = None) -> UsageRecord:
    """Add ``value`` to the organization's usage of ``metric`` for the current month."""
    start, end = month_bounds(now)
    record = (db.query(UsageRecord)
              .filter(UsageRecord.organization_id == organization_id, UsageRecord.metric == metric,
                      UsageRecord.period_start == start).first())
    if record is None:
        record = UsageRecord(organization_id=organization_id, metric=metric, value=0.0,
                             period_start=start, period_end=end)
        db.add(record)
    record.value = (record.value or 0.0) + value
    return record


def usage_summary(db: Session, organization_id: int, now: Optional[datetime] = None) -> dict:
    start, _ = month_bounds(now)
    totals = {}
    for r in (db.query(UsageRecord)
              .filter(UsageRecord.organization_id == organization_id, UsageRecord.period_start >= start)):
        totals[r.metric] = totals.get(r.metric, 0) + r.value
    return totals


def usage_records(db: Session, organization_id: int, period: str = "month",
                  now: Optional[datetime] = None) -> list:
    since = (now or datetime.utcnow()) - USAGE_PERIODS.get(period, USAGE_PERIODS["month"])
    rows = (db.query(UsageRecord)
            .filter(UsageRecord.organization_id == organization_id, UsageRecord.period_end >= since)
            .order_by(UsageRecord.period_start.desc(), UsageRecord.metric).all())
    return [
        {
            "metric": r.metric, "value": r.value,
            "cost": round(r.value * COST_PER_UNIT.get(r.metric, 0), 6),
            "periodStart": r.period_start.isoformat(), "periodEnd": r.period_end.isoformat(),
        }
        for r in rows
    ]


def create_tier_invoice(db: Session, org: Organization, tier: str,
                        now: Optional[datetime] = None) -> Optional[Invoice]:
    """A pending invoice for the first month of a paid tier; None for free or custom pricing."""
    price = PRICING[tier]["price"]
    if price <= 0:
        return None
    now = now or datetime.utcnow()
    invoice = Invoice(organization_id=org.id, amount=float(price), status="pending",
                      description=f"{PRICING[tier]['name']} plan subscription",
                      period_start=now, period_end=now + timedelta(days=30))
    db.add(invoice)
    return invoice


def pay_invoice(db: Session, org: Organization, invoice: Invoice) -> Invoice:
    invoice.status = "paid"
    invoice.paid_at = datetime.utcnow()
    org.current_spend = (org.current_spend or 0.0) + invoice.amount
    db.commit()
    logger.info(f"Invoice {invoice.id} paid for org {org.id}")
    return invoice
