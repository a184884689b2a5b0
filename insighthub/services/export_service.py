"""
services/export_service.py
---------------------------
Generates CSV and Excel exports of audit logs and analytics events.
"""

import io
import json

import pandas as pd

from insighthub.core.logging import get_logger
from insighthub.core.validation import classify_action

logger = get_logger(__name__)

AUDIT_COLUMNS = ["id", "timestamp", "user", "action", "category", "resourceType", "resourceId", "details"]
EVENT_COLUMNS = ["id", "timestamp", "eventType", "eventName", "userId", "sessionId", "source", "properties"]


def audit_frame(logs) -> pd.DataFrame:
    rows = [
        {
            "id": log.id,
            "timestamp": log.created_at.isoformat() if log.created_at else "",
            "user": log.user.email if log.user else "unknown",
            "action": log.action,
            "category": classify_action(log.action),
            "resourceType": log.resource_type,
            "resourceId": log.resource_id or "",
            "details": json.dumps(log.details or {}, default=str),
        }
        for log in logs
    ]
    return pd.DataFrame(rows, columns=AUDIT_COLUMNS)


def events_frame(events) -> pd.DataFrame:
    rows = [
        {
            "id": e.id,
            "timestamp": e.timestamp.isoformat() if e.timestamp else "",
            "eventType": e.event_type,
            "eventName": e.event_name,
            "userId": e.user_id or "",
            "sessionId": e.session_id or "",
            "source": e.source,
            "properties": json.dumps(e.properties or {}, default=str),
        }
        for e in events
    ]
    return pd.DataFrame(rows, columns=EVENT_COLUMNS)


def to_csv(df: pd.DataFrame) -> str:
    return df.to_csv(index=False)


def to_excel(df: pd.DataFrame, sheet_name: str) -> bytes:
    """
    Render a single-sheet .xlsx workbook.

    Args:
        df: Rows to write.
        sheet_name: Worksheet title.

    Returns:
        The workbook bytes.
    """
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
    logger.info(f"Exported {len(df)} rows as Excel ({sheet_name})")
    return buffer.getvalue()
