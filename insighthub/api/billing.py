from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from insighthub.api.deps import current_user, get_db, require_owner_or_admin
from insighthub.api.schemas import BudgetAlertBody, PaymentMethodBody, UpgradeBody
from insighthub.core.cache import cache, cache_keys
from insighthub.core.constants import BILLING_TIER_CHANGED, PRICING
from insighthub.core.logging import get_logger
from insighthub.models.billing import Invoice
from insighthub.models.user import Organization, User
from insighthub.services import audit
from insighthub.services.billing import create_tier_invoice, pay_invoice, usage_records, usage_summary
from insighthub.services.webhooks import dispatch_event

logger = get_logger(__name__)
router = APIRouter(prefix="/billing", tags=["billing"])


def _org(db: Session, user: User) -> Organization:
    return db.get(Organization, user.organization_id)


def _get_invoice(db: Session, org_id: int, invoice_id: int) -> Invoice:
    invoice = db.query(Invoice).filter(Invoice.id == invoice_id, Invoice.organization_id == org_id).first()
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/overview")
def overview(user: User = Depends(current_user), db: Session = Depends(get_db)):
    org = _org(db, user)
    invoices = (db.query(Invoice).filter(Invoice.organization_id == org.id)
                .order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(5).all())
    return {
        "tier": org.tier,
        "monthlyBudget": org.monthly_budget,
        "currentSpend": org.current_spend,
        "budgetAlertThreshold": org.budget_alert_threshold,
        "usage": usage_summary(db, org.id),
        "invoices": [i.to_dict() for i in invoices],
        "hasPaymentMethod": bool(org.payment_method_id),
    }


@router.get("/usage")
def usage(period: str = Query("month", pattern="^(week|month|year)$"), user: User = Depends(current_user),
          db: Session = Depends(get_db)):
    return usage_records(db, user.organization_id, period)


@router.get("/pricing")
def pricing():
    return PRICING


@router.post("/upgrade")
def upgrade(body: UpgradeBody, request: Request, background_tasks: BackgroundTasks,
            user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    org = _org(db, user)
    previous = org.tier
    org.tier = body.tier
    invoice = create_tier_invoice(db, org, body.tier)
    audit.record(db, organization_id=org.id, user_id=user.id, action=BILLING_TIER_CHANGED,
                 resource_type="organization", resource_id=org.id,
                 details={"previousTier": previous, "newTier": body.tier}, request=request)
    cache.delete(cache_keys.organization(org.id))

    data = {"tier": org.tier, "message": "Plan updated successfully",
            "invoice": invoice.to_dict() if invoice else None}
    if invoice:
        background_tasks.add_task(dispatch_event, org.id, "billing.invoice", invoice.to_dict())
    return data


@router.get("/invoices")
def list_invoices(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = (db.query(Invoice).filter(Invoice.organization_id == user.organization_id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc()).all())
    return [i.to_dict() for i in rows]


@router.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    return _get_invoice(db, user.organization_id, invoice_id).to_dict()


@router.post("/invoices/{invoice_id}/pay")
def pay(invoice_id: int, background_tasks: BackgroundTasks, user: User = Depends(require_owner_or_admin),
        db: Session = Depends(get_db)):
    org = _org(db, user)
    invoice = _get_invoice(db, org.id, invoice_id)
    if invoice.status == "paid":
        raise HTTPException(status_code=409, detail="Invoice already paid")
    if not org.payment_method_id:
        raise HTTPException(status_code=400, detail="No payment method on file")
    pay_invoice(db, org, invoice)
    cache.delete(cache_keys.organization(org.id))
    data = invoice.to_dict()
    background_tasks.add_task(dispatch_event, org.id, "billing.payment", data)
    return data


@router.post("/payment-method")
def payment_method(body: PaymentMethodBody, user: User = Depends(require_owner_or_admin),
                   db: Session = Depends(get_db)):
    org = _org(db, user)
    org.payment_method_id = body.payment_method_id
    db.commit()
    cache.delete(cache_keys.organization(org.id))
    logger.info(f"Payment method updated for org {org.id}")
    return {"message": "Payment method added", "hasPaymentMethod": True}


@router.post("/budget-alert")
def budget_alert(body: BudgetAlertBody, user: User = Depends(require_owner_or_admin),
                 db: Session = Depends(get_db)):
    org = _org(db, user)
    org.budget_alert_threshold = body.threshold
    db.commit()
    cache.delete(cache_keys.organization(org.id))
    return {"threshold": org.budget_alert_threshold, "message": "Budget alert set"}
