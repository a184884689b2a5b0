from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from insighthub.api.deps import current_user, get_db, require_owner, require_owner_or_admin
from insighthub.api.schemas import (
    CreateApiKeyBody, InviteBody, TransferOwnershipBody, UpdateMemberBody, UpdateOrganizationBody,
)
from insighthub.core.cache import cache, cache_keys, cache_or_fetch
from insighthub.core.config import settings
from insighthub.core.constants import (
    APIKEY_CREATED, APIKEY_REVOKED, CACHE_TTL_ORGANIZATION, ORGANIZATION_OWNERSHIP_TRANSFERRED,
    ORGANIZATION_UPDATED, ROLE_ADMIN, ROLE_OWNER, USER_DELETED, USER_INVITED, USER_UPDATED,
)
from insighthub.core.logging import get_logger
from insighthub.core.security import generate_api_key, generate_token, hash_password
from insighthub.core.validation import can_change_role, is_owner
from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.dashboard import Dashboard
from insighthub.models.notification import Notification
from insighthub.models.user import ApiKey, Organization, User
from insighthub.services import audit
from insighthub.services.notify import queue_email
from insighthub.services.organizations import purge_organization, remove_user
from insighthub.services.webhooks import dispatch_event

logger = get_logger(__name__)
router = APIRouter(prefix="/organizations", tags=["organizations"])


def _member_dict(u: User) -> dict:
    data = u.to_dict()
    data.pop("organizationId", None)
    return data


def _invalidate(org_id: int) -> None:
    cache.delete(cache_keys.organization(org_id))
    cache.delete(cache_keys.org_users(org_id))


def _get_member(db: Session, org_id: int, member_id: int) -> User:
    member = db.query(User).filter(User.id == member_id, User.organization_id == org_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member


@router.get("/current")
def get_current(user: User = Depends(current_user), db: Session = Depends(get_db)):
    org_id = user.organization_id

    def load():
        org = db.get(Organization, org_id)
        if not org:
            return None
        data = org.to_dict()
        data["counts"] = {
            "users": db.query(func.count(User.id)).filter(User.organization_id == org_id).scalar(),
            "dashboards": db.query(func.count(Dashboard.id)).filter(Dashboard.organization_id == org_id).scalar(),
            "analyticsEvents": db.query(func.count(AnalyticsEvent.id))
                                 .filter(AnalyticsEvent.organization_id == org_id).scalar(),
        }
        return data

    data = cache_or_fetch(cache_keys.organization(org_id), load, CACHE_TTL_ORGANIZATION)
    if data is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return data


@router.put("/current")
def update_current(body: UpdateOrganizationBody, request: Request,
                   user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    org = db.get(Organization, user.organization_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "slug" in changes and changes["slug"] != org.slug:
        if db.query(Organization.id).filter(Organization.slug == changes["slug"]).first():
            raise HTTPException(status_code=409, detail="Slug already in use")
    for field, value in changes.items():
        setattr(org, field, value)
    audit.record(db, organization_id=org.id, user_id=user.id, action=ORGANIZATION_UPDATED,
                 resource_type="organization", resource_id=org.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True), request=request)
    _invalidate(org.id)
    return org.to_dict()


@router.delete("/current")
def delete_current(user: User = Depends(require_owner), db: Session = Depends(get_db)):
    org_id = user.organization_id
    member_ids = [uid for (uid,) in db.query(User.id).filter(User.organization_id == org_id)]
    purge_organization(db, org_id)
    _invalidate(org_id)
    for member_id in member_ids:
        cache.delete(cache_keys.user(member_id))
    cache.delete_pattern(rf"^org:{org_id}:")
    return {"message": "Organization deleted"}


@router.get("/settings")
def get_settings(user: User = Depends(current_user), db: Session = Depends(get_db)):
    org = db.get(Organization, user.organization_id)
    return {
        "id": org.id, "name": org.name, "slug": org.slug, "tier": org.tier,
        "monthlyBudget": org.monthly_budget, "settings": org.settings or {},
    }


@router.get("/members")
def members(user: User = Depends(current_user), db: Session = Depends(get_db)):
    org_id = user.organization_id

    def load():
        rows = (db.query(User).filter(User.organization_id == org_id)
                .order_by(User.created_at.desc(), User.id.desc()).all())
        return [_member_dict(u) for u in rows]

    return cache_or_fetch(cache_keys.org_users(org_id), load, CACHE_TTL_ORGANIZATION)


@router.post("/invite", status_code=201)
def invite(body: InviteBody, request: Request, background_tasks: BackgroundTasks,
           user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == body.email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")

    temporary_password = generate_token(12)
    member = User(email=body.email, name=body.name, role=body.role, invited=True,
                  hashed_password=hash_password(temporary_password),
                  organization_id=user.organization_id)
    db.add(member); db.flush()
    db.add(Notification(user_id=user.id, organization_id=user.organization_id, type="info",
                        title="Member Invited",
                        message=f"{body.name} has been added to your organization"))
    org = db.get(Organization, user.organization_id)
    queue_email(db, member.email, f"You've been invited to {org.name} on {settings.APP_NAME}",
                f"<p>{user.name} invited you to join <b>{org.name}</b>.</p>"
                f"<p>Sign in at <a href=\"{settings.FRONTEND_URL}/login\">{settings.FRONTEND_URL}/login</a> "
                f"with your email and the temporary password <code>{temporary_password}</code>.</p>",
                commit=False)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_INVITED,
                 resource_type="user", resource_id=member.id,
                 details={"invitedEmail": member.email, "role": member.role}, request=request)
    _invalidate(user.organization_id)
    background_tasks.add_task(dispatch_event, user.organization_id, "user.invited",
                              {**member.to_public(), "role": member.role})
    logger.info(f"User {member.email} invited to org {user.organization_id}")

    return {**member.to_public(), "role": member.role, "temporaryPassword": temporary_password}


@router.put("/members/{member_id}")
def update_member(member_id: int, body: UpdateMemberBody, request: Request,
                  user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    member = _get_member(db, user.organization_id, member_id)
    if member.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot change your own role")
    if not can_change_role(member):
        raise HTTPException(status_code=403, detail="Cannot modify the organization owner")

    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(member, field, value)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_UPDATED,
                 resource_type="user", resource_id=member.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True),
                 request=request)
    _invalidate(user.organization_id)
    cache.delete(cache_keys.user(member.id))
    return _member_dict(member)


@router.delete("/members/{member_id}")
def remove_member(member_id: int, request: Request, background_tasks: BackgroundTasks,
                  user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    member = _get_member(db, user.organization_id, member_id)
    if member.id == user.id:
        raise HTTPException(status_code=400, detail="Cannot remove yourself")
    if is_owner(member):
        raise HTTPException(status_code=403, detail="Cannot remove the organization owner")

    removed = {**member.to_public(), "role": member.role}
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_DELETED,
                 resource_type="user", resource_id=member.id,
                 details={"deletedEmail": member.email}, request=request, commit=False)
    remove_user(db, member)
    _invalidate(user.organization_id)
    cache.delete(cache_keys.user(member_id))
    background_tasks.add_task(dispatch_event, user.organization_id, "user.removed", removed)
    return {"message": "Member removed"}


@router.post("/transfer-ownership")
def transfer_ownership(body: TransferOwnershipBody, request: Request,
                       user: User = Depends(require_owner), db: Session = Depends(get_db)):
    target = _get_member(db, user.organization_id, body.user_id)
    if target.id == user.id:
        raise HTTPException(status_code=400, detail="You already own this organization")
    if not target.is_active:
        raise HTTPException(status_code=400, detail="Cannot transfer ownership to an inactive user")

    target.role = ROLE_OWNER
    user.role = ROLE_ADMIN
    audit.record(db, organization_id=user.organization_id, user_id=user.id,
                 action=ORGANIZATION_OWNERSHIP_TRANSFERRED, resource_type="organization",
                 resource_id=user.organization_id,
                 details={"fromUserId": user.id, "toUserId": target.id}, request=request)
    _invalidate(user.organization_id)
    cache.delete(cache_keys.user(user.id))
    cache.delete(cache_keys.user(target.id))
    return {"message": "Ownership transferred", "owner": _member_dict(target)}


# ── API keys ──────────────────────────────────────────────
@router.get("/api-keys")
def list_api_keys(user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    keys = (db.query(ApiKey).filter(ApiKey.organization_id == user.organization_id)
            .order_by(ApiKey.created_at.desc(), ApiKey.id.desc()).all())
    return [k.to_dict() for k in keys]


@router.post("/api-keys", status_code=201)
def create_api_key(body: CreateApiKeyBody, request: Request,
                   user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    key, key_hash = generate_api_key()
    expires_at = datetime.utcnow() + timedelta(days=body.expires_in_days) if body.expires_in_days else None
    api_key = ApiKey(name=body.name, key_hash=key_hash, key_prefix=key[:10],
                     organization_id=user.organization_id, created_by_id=user.id,
                     permissions=body.permissions, expires_at=expires_at)
    db.add(api_key); db.flush()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=APIKEY_CREATED,
                 resource_type="api_key", resource_id=api_key.id,
                 details={"name": body.name, "permissions": body.permissions}, request=request)
    # the full key is only ever returned here
    return {**api_key.to_dict(), "key": key}


@router.delete("/api-keys/{key_id}")
def revoke_api_key(key_id: int, request: Request, user: User = Depends(require_owner_or_admin),
                   db: Session = Depends(get_db)):
    api_key = (db.query(ApiKey)
               .filter(ApiKey.id == key_id, ApiKey.organization_id == user.organization_id).first())
    if not api_key:
        raise HTTPException(status_code=404, detail="API key not found")
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=APIKEY_REVOKED,
                 resource_type="api_key", resource_id=api_key.id, details={"name": api_key.name},
                 request=request, commit=False)
    db.delete(api_key)
    db.commit()
    return {"message": "API key revoked"}
