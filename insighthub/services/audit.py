"""
services/audit.py
-----------------
Appends audit log entries and answers the read queries behind the audit pages.
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from insighthub.core.constants import AUDIT_SEARCH_LIMIT
from insighthub.models.audit import AuditLog

ORDER_COLUMNS = {
    "createdAt": AuditLog.created_at,
    "action": AuditLog.action,
    "resourceType": AuditLog.resource_type,
    "userId": AuditLog.user_id,
}

STATS_PERIODS = {"week": timedelta(days=7), "month": timedelta(days=30), "year": timedelta(days=365)}


def record(db: Session, *, organization_id: int, user_id: Optional[int], action: str,
           resource_type: str, resource_id=None, details: Optional[dict] = None,
           request: Optional[Request] = None, commit: bool = True) -> AuditLog:
    """Append one audit entry; ``request`` supplies the client IP and user agent."""
    log = AuditLog(
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        details=details or {},
        ip_address=request.client.host if request is not None and request.client else None,
        user_agent=request.headers.get("user-agent") if request is not None else None,
    )
    db.add(log)
    if commit:
        db.commit()
    return log


def query_logs(db: Session, organization_id: int, *, action=None, resource_type=None,
               resource_id=None, user_id=None, start_date: Optional[datetime] = None,
               end_date: Optional[datetime] = None, order_by: str = "createdAt",
               order: str = "desc"):
    q = (db.query(AuditLog).options(joinedload(AuditLog.user))
         .filter(AuditLog.organization_id == organization_id))
    if action:
        q = q.filter(AuditLog.action == action)
    if resource_type:
        q = q.filter(AuditLog.resource_type == resource_type)
    if resource_id:
        q = q.filter(AuditLog.resource_id == str(resource_id))
    if user_id:
        q = q.filter(AuditLog.user_id == user_id)
    if start_date:
        q = q.filter(AuditLog.created_at >= start_date)
    if end_date:
        q = q.filter(AuditLog.created_at <= end_date)
    column = ORDER_COLUMNS.get(order_by, AuditLog.created_at)
    direction = column.asc() if order.lower() == "asc" else column.desc()
    return q.order_by(direction, AuditLog.id.desc())


def search(db: Session, organization_id: int, text: str, limit: int = AUDIT_SEARCH_LIMIT):
    pattern = f"%{text.lower()}%"
    return (db.query(AuditLog).options(joinedload(AuditLog.user))
            .filter(AuditLog.organization_id == organization_id,
                    or_(func.lower(AuditLog.action).like(pattern),
                        func.lower(AuditLog.resource_type).like(pattern)))
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
            .limit(limit).all())


def stats(db: Session, organization_id: int, period: str = "month", now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    since = now - STATS_PERIODS.get(period, STATS_PERIODS["month"])
    base = [AuditLog.organization_id == organization_id, AuditLog.created_at >= since]

    def grouped(column, limit=None):
        count = func.count(AuditLog.id)
        q = (db.query(column, count).filter(*base).group_by(column)
             .order_by(count.desc(), column))
        if limit:
            q = q.limit(limit)
        return q.all()

    return {
        "totalLogs": db.query(func.count(AuditLog.id)).filter(*base).scalar() or 0,
        "byAction": [{"action": a, "count": c} for a, c in grouped(AuditLog.action, 10)],
        "byUser": [{"userId": u, "count": c} for u, c in grouped(AuditLog.user_id, 10)],
        "byResource": [{"resourceType": r, "count": c} for r, c in grouped(AuditLog.resource_type)],
        "period": period if period in STATS_PERIODS else "month",
    }


def delete_older_than(db: Session, organization_id: int, before: datetime) -> int:
    deleted = (db.query(AuditLog)
               .filter(AuditLog.organization_id == organization_id, AuditLog.created_at < before)
               .delete(synchronize_session=False))
    db.commit()
    return deleted
