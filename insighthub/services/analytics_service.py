"""
services/analytics_service.py
-----------------------------
Aggregations over analytics events: period statistics and the data series
rendered by dashboard widgets.
"""

from datetime import datetime, timedelta
from typing import Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.dashboard import Widget

PERIODS = {"day": timedelta(days=1), "week": timedelta(days=7), "month": timedelta(days=30)}
TABLE_ROWS = 20


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.utcnow()) - PERIODS.get(period, PERIODS["week"])


def _events(db: Session, organization_id: int, since: datetime, event_type: Optional[str] = None):
    q = db.query(AnalyticsEvent).filter(AnalyticsEvent.organization_id == organization_id,
                                        AnalyticsEvent.timestamp >= since)
    if event_type:
        q = q.filter(AnalyticsEvent.event_type == event_type)
    return q


def daily_counts(events, since: datetime, until: datetime) -> list:
    """
    Count events per calendar day, zero-filling days without events.

    Example: events on Mon (2) and Wed (1) over Mon..Wed → [2, 0, 1]
    """
    days = pd.date_range(since.date(), until.date(), freq="D")
    if not events:
        return [{"date": d.date().isoformat(), "count": 0} for d in days]
    df = pd.DataFrame({"timestamp": [e.timestamp for e in events]})
    counts = df.groupby(pd.to_datetime(df["timestamp"]).dt.normalize()).size()
    counts = counts.reindex(days, fill_value=0)
    return [{"date": d.date().isoformat(), "count": int(c)} for d, c in counts.items()]


def stats(db: Session, organization_id: int, period: str = "week", now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    since = period_start(period, now)
    q = _events(db, organization_id, since)
    by_type = (db.query(AnalyticsEvent.event_type, func.count(AnalyticsEvent.id))
               .filter(AnalyticsEvent.organization_id == organization_id,
                       AnalyticsEvent.timestamp >= since)
               .group_by(AnalyticsEvent.event_type)
               .order_by(func.count(AnalyticsEvent.id).desc()).all())
    unique_users = (db.query(func.count(func.distinct(AnalyticsEvent.user_id)))
                    .filter(AnalyticsEvent.organization_id == organization_id,
                            AnalyticsEvent.timestamp >= since,
                            AnalyticsEvent.user_id.isnot(None)).scalar())
    return {
        "period": period if period in PERIODS else "week",
        "totalEvents": q.count(),
        "uniqueUsers": unique_users or 0,
        "byType": [{"eventType": t, "count": c} for t, c in by_type],
        "byDay": daily_counts(q.all(), since, now),
    }


def widget_data(db: Session, widget: Widget, now: Optional[datetime] = None) -> dict:
    """Compute the data a widget renders from its ``config``."""
    now = now or datetime.utcnow()
    config = widget.config or {}
    period = config.get("period", "week")
    since = period_start(period, now)
    event_type = config.get("eventType") or widget.data_source
    q = _events(db, widget.organization_id, since, event_type)

    if widget.type == "metric":
        data = {"value": q.count(), "label": config.get("label", widget.name)}
    elif widget.type == "chart":
        series = daily_counts(q.all(), since, now)
        data = {
            "chartType": config.get("chartType", "line"),
            "labels": [p["date"] for p in series],
            "values": [p["count"] for p in series],
        }
    elif widget.type == "table":
        rows = q.order_by(AnalyticsEvent.timestamp.desc()).limit(config.get("limit", TABLE_ROWS)).all()
        data = {"columns": ["timestamp", "eventType", "eventName", "userId"],
                "rows": [[r.timestamp.isoformat(), r.event_type, r.event_name, r.user_id] for r in rows]}
    else:
        data = {"text": config.get("text", "")}
    return {"widgetId": widget.id, "type": widget.type, "data": data, "generatedAt": now.isoformat()}
