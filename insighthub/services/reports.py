"""
services/reports.py
-------------------
Daily per-organization reports.

For each organization the generator counts analytics events, users and
dashboards, fetches the audit log entries of the last 24 hours, writes the
summary as single-line JSON to ``<REPORTS_DIR>/<organizationId>_<YYYY-MM-DD>.json``
and emails it to the organization's owners and admins. Organizations are
processed one after another; a failure is logged and the next organization
is processed.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from jinja2 import Environment, select_autoescape
from sqlalchemy.orm import Session

from insighthub.core.config import settings
from insighthub.core.constants import REPORT_EMAIL_SUBJECT, ROLE_ADMIN, ROLE_OWNER
from insighthub.core.logging import get_logger
from insighthub.db.session import SessionLocal
from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.audit import AuditLog
from insighthub.models.dashboard import Dashboard
from insighthub.models.user import Organization, User
from insighthub.services.notify import send_email

logger = get_logger(__name__)

_templates = Environment(autoescape=select_autoescape(default_for_string=True))
REPORT_EMAIL_TEMPLATE = _templates.from_string(
    "<h1>Daily Report</h1>\n"
    "<p>Please find the daily analytics report for {{ organization }} below.</p>\n"
    "<pre>{{ content }}</pre>\n"
)


def report_path(organization_id: int, report_date, reports_dir=None) -> Path:
    return Path(reports_dir or settings.REPORTS_DIR) / f"{organization_id}_{report_date.isoformat()}.json"


def build_org_report(db: Session, organization_id: int, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    window_start = now - timedelta(hours=settings.REPORT_WINDOW_HOURS)

    event_count = db.query(AnalyticsEvent).filter(AnalyticsEvent.organization_id == organization_id).count()
    user_count = db.query(User).filter(User.organization_id == organization_id).count()
    dashboard_count = db.query(Dashboard).filter(Dashboard.organization_id == organization_id).count()
    recent_activity = (db.query(AuditLog)
                       .filter(AuditLog.organization_id == organization_id,
                               AuditLog.created_at >= window_start)
                       .order_by(AuditLog.created_at, AuditLog.id).all())

    return {
        "generatedAt": now.isoformat() + "Z",
        "organizationId": organization_id,
        "period": "daily",
        "metrics": {
            "totalEvents": event_count,
            "totalUsers": user_count,
            "totalDashboards": dashboard_count,
            "activityCount": len(recent_activity),
        },
        "activity": [
            {"action": a.action, "timestamp": a.created_at.isoformat() + "Z", "userId": a.user_id}
            for a in recent_activity
        ],
    }


def write_report(report: dict, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    # json.dumps without indent never emits a newline
    path.write_text(json.dumps(report, separators=(",", ":")), encoding="utf-8")
    return path


def generate_org_report(db: Session, organization_id: int, reports_dir=None,
                        now: Optional[datetime] = None) -> Path:
    now = now or datetime.utcnow()
    report = build_org_report(db, organization_id, now)
    return write_report(report, report_path(organization_id, now.date(), reports_dir))


def report_recipients(db: Session, organization_id: int) -> list:
    return (db.query(User)
            .filter(User.organization_id == organization_id,
                    User.role.in_([ROLE_OWNER, ROLE_ADMIN]),
                    User.is_active.is_(True))
            .order_by(User.id).all())


def send_report_email(email: str, path: Path, organization_name: str = "") -> bool:
    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Failed to read report {path}: {e}")
        return False
    html = REPORT_EMAIL_TEMPLATE.render(organization=organization_name, content=content)
    ok, _ = send_email(email, REPORT_EMAIL_SUBJECT, html)
    return ok


def generate_daily_reports(session_factory: Callable[[], Session] = SessionLocal,
                           reports_dir=None, now: Optional[datetime] = None) -> dict:
    """
    Generate, store and email the daily report of every organization.

    Returns:
        Dict with 'generated' (paths), 'failed' (organization ids) and
        'emailed' (number of emails accepted by the SMTP relay).
    """
    now = now or datetime.utcnow()
    summary = {"generated": [], "failed": [], "emailed": 0}
    logger.info("Generating daily reports...")

    db = session_factory()
    try:
        try:
            organizations = db.query(Organization.id, Organization.name).order_by(Organization.id).all()
        except Exception as e:
            logger.error(f"Failed to get organizations: {e}")
            return summary

        for org_id, org_name in organizations:
            try:
                path = generate_org_report(db, org_id, reports_dir, now)
                recipients = report_recipients(db, org_id)
            except Exception as e:
                db.rollback()
                logger.error(f"Error generating report for org {org_id}: {e}")
                summary["failed"].append(org_id)
                continue

            logger.info(f"Report generated: {path}")
            summary["generated"].append(path)
            for user in recipients:
                try:
                    if send_report_email(user.email, path, org_name):
                        summary["emailed"] += 1
                except Exception as e:
                    logger.error(f"Error emailing report for org {org_id} to {user.email!r}: {e}")
    finally:
        db.close()
    return summary


def cleanup_old_reports(reports_dir=None, retention_days: Optional[int] = None,
                        now: Optional[datetime] = None) -> list:
    """Delete report files whose modification time is older than the retention."""
    directory = Path(reports_dir or settings.REPORTS_DIR)
    retention = retention_days if retention_days is not None else settings.REPORT_RETENTION_DAYS
    if now is None:
        current = time.time()
    else:
        # naive datetimes are UTC throughout
        current = (now if now.tzinfo else now.replace(tzinfo=timezone.utc)).timestamp()
    cutoff = current - retention * 86400
    logger.info("Cleaning up old reports...")

    if not directory.is_dir():
        return []
    deleted = []
    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        try:
            if entry.stat().st_mtime < cutoff:
                entry.unlink()
                deleted.append(entry)
                logger.info(f"Deleted old report: {entry}")
        except OSError as e:
            logger.error(f"Failed to delete report {entry}: {e}")
    return deleted
