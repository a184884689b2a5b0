"""
services/webhooks.py
--------------------
Signs and delivers webhook payloads and keeps the delivery history.
"""

import json
import time
from datetime import datetime
from typing import Any, Optional

import requests
from sqlalchemy.orm import Session

from insighthub.core.config import settings
from insighthub.core.constants import WEBHOOK_RESPONSE_LIMIT, WEBHOOK_USER_AGENT
from insighthub.core.logging import get_logger
from insighthub.core.security import sign_payload
from insighthub.core.validation import is_successful_delivery
from insighthub.db.session import SessionLocal
from insighthub.models.webhook import Webhook, WebhookDelivery

logger = get_logger(__name__)


def build_payload(event: str, data: Any, now: Optional[datetime] = None) -> dict:
    return {
        "event": event,
        "timestamp": (now or datetime.utcnow()).isoformat() + "Z",
        "data": data,
    }


def encode_payload(payload: dict) -> bytes:
    return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


def deliver(db: Session, webhook: Webhook, payload: dict) -> WebhookDelivery:
    """
    POST ``payload`` to the webhook URL and record the outcome.

    The body is signed with HMAC-SHA256 over the exact bytes sent. Any 2xx
    response is a success and resets ``failure_count``; everything else,
    including connection errors, increments it.
    """
    body = encode_payload(payload)
    headers = {
        "Content-Type": "application/json",
        "X-Webhook-Signature": sign_payload(body, webhook.secret),
        "X-Webhook-ID": str(webhook.id),
        "X-Webhook-Event": payload.get("event", ""),
        "User-Agent": WEBHOOK_USER_AGENT,
    }
    delivery = WebhookDelivery(webhook_id=webhook.id, event=payload.get("event", ""), payload=payload)

    started = time.monotonic()
    try:
        resp = requests.post(webhook.url, data=body, headers=headers,
                             timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
        delivery.status_code = resp.status_code
        delivery.response = resp.text[:WEBHOOK_RESPONSE_LIMIT]
        delivery.success = is_successful_delivery(resp.status_code)
    except requests.RequestException as e:
        delivery.error = str(e)[:WEBHOOK_RESPONSE_LIMIT]
        delivery.success = False
    delivery.duration_ms = int((time.monotonic() - started) * 1000)

    webhook.last_triggered_at = datetime.utcnow()
    if delivery.success:
        webhook.failure_count = 0
    else:
        webhook.failure_count = (webhook.failure_count or 0) + 1
        logger.warning(f"Webhook delivery failed for {webhook.id}: "
                       f"{delivery.status_code or delivery.error}")
    db.add(delivery)
    db.commit()
    return delivery


def subscribed_webhooks(db: Session, organization_id: int, event: str) -> list:
    active = (db.query(Webhook)
              .filter(Webhook.organization_id == organization_id, Webhook.is_active.is_(True))
              .order_by(Webhook.id).all())
    return [w for w in active if w.subscribes_to(event)]


def trigger_webhooks(db: Session, organization_id: int, event: str, data: Any) -> list:
    """Deliver ``event`` sequentially to every active subscribed webhook."""
    payload = build_payload(event, data)
    return [deliver(db, w, payload) for w in subscribed_webhooks(db, organization_id, event)]


def dispatch_event(organization_id: int, event: str, data: Any) -> None:
    """Background-task entry point: own session, errors logged and dropped."""
    db = SessionLocal()
    try:
        trigger_webhooks(db, organization_id, event, data)
    except Exception as e:
        db.rollback()
        logger.error(f"Trigger webhooks error for org {organization_id} ({event}): {e}")
    finally:
        db.close()
