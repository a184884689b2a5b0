from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from insighthub.api.deps import current_user, get_db, require_owner_or_admin
from insighthub.api.schemas import CreateWebhookBody, UpdateWebhookBody
from insighthub.core.constants import WEBHOOK_CREATED, WEBHOOK_DELETED, WEBHOOK_UPDATED, WEBHOOK_WILDCARD
from insighthub.core.logging import get_logger
from insighthub.core.security import generate_token, verify_signature
from insighthub.models.user import User
from insighthub.models.webhook import Webhook, WebhookDelivery
from insighthub.services import audit
from insighthub.services.webhooks import build_payload, deliver

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

DELIVERY_HISTORY_LIMIT = 50


def _get_webhook(db: Session, org_id: int, webhook_id: int) -> Webhook:
    webhook = db.query(Webhook).filter(Webhook.id == webhook_id, Webhook.organization_id == org_id).first()
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return webhook


@router.get("")
def list_webhooks(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = (db.query(Webhook).filter(Webhook.organization_id == user.organization_id)
            .order_by(Webhook.created_at.desc(), Webhook.id.desc()).all())
    return [w.to_dict() for w in rows]


@router.post("", status_code=201)
def create_webhook(body: CreateWebhookBody, request: Request, user: User = Depends(require_owner_or_admin),
                   db: Session = Depends(get_db)):
    events = body.events if body.events is not None else [WEBHOOK_WILDCARD]
    webhook = Webhook(name=body.name, url=body.url, secret=generate_token(32), events=events,
                      organization_id=user.organization_id)
    db.add(webhook); db.flush()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WEBHOOK_CREATED,
                 resource_type="webhook", resource_id=webhook.id,
                 details={"name": body.name, "url": body.url, "events": events}, request=request)
    logger.info(f"Webhook {webhook.id} created for org {user.organization_id}")
    return webhook.to_dict(include_secret=True)


async def raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/incoming/{webhook_id}")
def incoming(webhook_id: int, request: Request, body: bytes = Depends(raw_body), db: Session = Depends(get_db)):
    webhook = db.get(Webhook, webhook_id)
    if not webhook:
        raise HTTPException(status_code=404, detail="Webhook not found")
    signature = request.headers.get("x-webhook-signature")
    if signature and not verify_signature(body, signature, webhook.secret):
        raise HTTPException(status_code=401, detail="Invalid signature")
    logger.info(f"Received incoming webhook {webhook_id} ({len(body)} bytes)")
    return {"received": True, "verified": bool(signature)}


@router.get("/{webhook_id}")
def get_webhook(webhook_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return _get_webhook(db, user.organization_id, webhook_id).to_dict()


@router.put("/{webhook_id}")
def update_webhook(webhook_id: int, body: UpdateWebhookBody, request: Request,
                   user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    webhook = _get_webhook(db, user.organization_id, webhook_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(webhook, field, value)
    if changes.get("is_active"):
        webhook.failure_count = 0
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WEBHOOK_UPDATED,
                 resource_type="webhook", resource_id=webhook.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True),
                 request=request)
    return webhook.to_dict()


@router.delete("/{webhook_id}")
def delete_webhook(webhook_id: int, request: Request, user: User = Depends(require_owner_or_admin),
                   db: Session = Depends(get_db)):
    webhook = _get_webhook(db, user.organization_id, webhook_id)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WEBHOOK_DELETED,
                 resource_type="webhook", resource_id=webhook.id, details={"name": webhook.name},
                 request=request, commit=False)
    db.delete(webhook)
    db.commit()
    return {"message": "Webhook deleted"}


@router.post("/{webhook_id}/regenerate-secret")
def regenerate_secret(webhook_id: int, request: Request, user: User = Depends(require_owner_or_admin),
                      db: Session = Depends(get_db)):
    webhook = _get_webhook(db, user.organization_id, webhook_id)
    webhook.secret = generate_token(32)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WEBHOOK_UPDATED,
                 resource_type="webhook", resource_id=webhook.id, details={"secretRegenerated": True},
                 request=request)
    return {"secret": webhook.secret}


@router.post("/{webhook_id}/test")
def test_webhook(webhook_id: int, user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    webhook = _get_webhook(db, user.organization_id, webhook_id)
    payload = build_payload("test", {"message": "This is a test webhook delivery"})
    return deliver(db, webhook, payload).to_dict()


@router.get("/{webhook_id}/deliveries")
def deliveries(webhook_id: int, limit: int = Query(DELIVERY_HISTORY_LIMIT, ge=1, le=DELIVERY_HISTORY_LIMIT),
               user: User = Depends(current_user), db: Session = Depends(get_db)):
    webhook = _get_webhook(db, user.organization_id, webhook_id)
    rows = (db.query(WebhookDelivery).filter(WebhookDelivery.webhook_id == webhook.id)
            .order_by(WebhookDelivery.created_at.desc(), WebhookDelivery.id.desc()).limit(limit).all())
    return [d.to_dict() for d in rows]
