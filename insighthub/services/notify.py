"""
services/notify.py
------------------
Outbound email: direct SMTP sends and the persistent email queue drained by
the jobs service.
"""

import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from insighthub.core.config import settings
from insighthub.core.constants import EMAIL_BATCH_SIZE, EMAIL_MAX_ATTEMPTS
from insighthub.core.logging import get_logger
from insighthub.models.notification import EmailQueue

logger = get_logger(__name__)


def send_email(to: str, subject: str, html: str) -> Tuple[bool, str]:
    """
    Send one HTML email through the configured SMTP relay.

    Returns:
        ``(True, "")`` on success, otherwise ``(False, error)``. Never raises.
    """
    logger.info(f"Sending email to {to!r}: {subject}")
    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.EMAIL_FROM
        msg["To"] = to
        msg.set_content("This message requires an HTML capable mail client.")
        msg.add_alternative(html, subtype="html")
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USER:
                smtp.login(settings.SMTP_USER, settings.SMTP_PASS)
            smtp.send_message(msg)
        return True, ""
    except (smtplib.SMTPException, OSError, ValueError) as e:
        # ValueError: header injection in an address or subject
        logger.error(f"Failed to send email to {to!r}: {e}")
        return False, str(e)[:400]


def queue_email(db: Session, to: str, subject: str, body: str,
                scheduled_for: Optional[datetime] = None, commit: bool = True) -> EmailQueue:
    item = EmailQueue(to=to, subject=subject, body=body,
                      scheduled_for=scheduled_for or datetime.utcnow())
    db.add(item)
    if commit:
        db.commit()
    return item


def process_email_queue(db: Session, batch_size: int = EMAIL_BATCH_SIZE,
                        now: Optional[datetime] = None) -> dict:
    """
    Send every due, pending email that still has attempts left.

    A failed send increments ``attempts`` and keeps the item pending until it
    reaches ``EMAIL_MAX_ATTEMPTS``, at which point it is marked failed.

    Returns:
        Dict with counts: {'sent', 'retrying', 'failed'}.
    """
    now = now or datetime.utcnow()
    due = (db.query(EmailQueue)
           .filter(EmailQueue.status == "pending",
                   EmailQueue.scheduled_for <= now,
                   EmailQueue.attempts < EMAIL_MAX_ATTEMPTS)
           .order_by(EmailQueue.scheduled_for, EmailQueue.id)
           .limit(batch_size).all())

    result = {"sent": 0, "retrying": 0, "failed": 0}
    for item in due:
        ok, error = send_email(item.to, item.subject, item.body)
        if ok:
            item.status = "sent"
            item.sent_at = datetime.utcnow()
            result["sent"] += 1
        else:
            item.attempts += 1
            item.last_error = error
            if item.attempts >= EMAIL_MAX_ATTEMPTS:
                item.status = "failed"
                result["failed"] += 1
            else:
                result["retrying"] += 1
        db.commit()
    if due:
        logger.info(f"Email queue processed: {result}")
    return result
