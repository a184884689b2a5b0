from fastapi import APIRouter, Body, Depends, HTTPException, Request
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from insighthub.api.deps import current_user, get_db
from insighthub.api.schemas import ChangePasswordBody, DeleteAccountBody, UpdateProfileBody
from insighthub.core.cache import cache, cache_keys, cache_or_fetch
from insighthub.core.constants import (
    CACHE_TTL_USER, USER_DELETED, USER_PASSWORD_CHANGED, USER_SEARCH_LIMIT, USER_UPDATED,
)
from insighthub.core.logging import get_logger
from insighthub.core.security import hash_password, verify_password
from insighthub.core.validation import is_owner, is_valid_password, should_search
from insighthub.models.user import Session as UserSession, User
from insighthub.services import audit
from insighthub.services.organizations import remove_user

logger = get_logger(__name__)
router = APIRouter(prefix="/users", tags=["users"])

DEFAULT_PREFERENCES = {
    "theme": "light",
    "language": "en",
    "timezone": "UTC",
    "emailNotifications": True,
    "dashboardRefreshRate": 300,
}


@router.get("/me")
def me(user: User = Depends(current_user)):
    data = user.to_dict()
    org = user.organization
    data["organization"] = {"id": org.id, "name": org.name, "slug": org.slug, "tier": org.tier}
    return data


@router.put("/me")
def update_me(body: UpdateProfileBody, request: Request, user: User = Depends(current_user),
              db: Session = Depends(get_db)):
    for field, value in body.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, field, value)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_UPDATED,
                 resource_type="user", resource_id=user.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True), request=request)
    cache.delete(cache_keys.user(user.id))
    return user.to_dict()


@router.put("/me/password")
def change_password(body: ChangePasswordBody, request: Request, user: User = Depends(current_user),
                    db: Session = Depends(get_db)):
    if not body.current_password or not body.new_password:
        raise HTTPException(status_code=400, detail="Current and new password required")
    if not is_valid_password(body.new_password):
        raise HTTPException(status_code=400, detail="Password must be at least 6 characters")
    if not verify_password(body.current_password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    user.hashed_password = hash_password(body.new_password)
    audit.record(db, organization_id=user.organization_id, user_id=user.id,
                 action=USER_PASSWORD_CHANGED, resource_type="user", resource_id=user.id,
                 request=request)
    return {"message": "Password changed successfully"}


@router.get("/me/preferences")
def get_preferences(user: User = Depends(current_user)):
    return {**DEFAULT_PREFERENCES, **(user.preferences or {})}


@router.put("/me/preferences")
def update_preferences(preferences: dict = Body(...), user: User = Depends(current_user),
                       db: Session = Depends(get_db)):
    # reassign so the JSON column is flagged dirty
    user.preferences = {**(user.preferences or {}), **preferences}
    db.commit()
    return {**DEFAULT_PREFERENCES, **user.preferences}


@router.get("/me/sessions")
def sessions(request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = (db.query(UserSession).filter(UserSession.user_id == user.id)
            .order_by(UserSession.created_at.desc(), UserSession.id.desc()).all())
    return [s.to_dict(request.state.session_id) for s in rows]


@router.delete("/me/sessions/{session_id}")
def revoke_session(session_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    deleted = (db.query(UserSession)
               .filter(UserSession.id == session_id, UserSession.user_id == user.id)
               .delete())
    if not deleted:
        raise HTTPException(status_code=404, detail="Session not found")
    db.commit()
    return {"message": "Session revoked"}


@router.delete("/me/sessions")
def revoke_other_sessions(request: Request, user: User = Depends(current_user),
                          db: Session = Depends(get_db)):
    revoked = (db.query(UserSession)
               .filter(UserSession.user_id == user.id, UserSession.id != request.state.session_id)
               .delete())
    db.commit()
    return {"message": "All other sessions revoked", "revoked": revoked}


@router.delete("/me")
def delete_account(body: DeleteAccountBody, request: Request, user: User = Depends(current_user),
                   db: Session = Depends(get_db)):
    if not body.password:
        raise HTTPException(status_code=400, detail="Password required")
    if body.confirmation != "DELETE":
        raise HTTPException(status_code=400, detail="Please confirm by typing DELETE")
    if not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect password")
    if is_owner(user):
        raise HTTPException(status_code=400,
                            detail="Cannot delete account. You are the owner. Transfer ownership first.")

    audit.record(db, organization_id=user.organization_id, user_id=None, action=USER_DELETED,
                 resource_type="user", resource_id=user.id, details={"email": user.email},
                 request=request, commit=False)
    remove_user(db, user)
    cache.delete(cache_keys.user(user.id))
    cache.delete(cache_keys.org_users(user.organization_id))
    logger.info(f"User {user.id} deleted their account")
    return {"message": "Account deleted"}


@router.get("/search/{query}")
def search_users(query: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    if not should_search(query):
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters")
    pattern = f"%{query.strip().lower()}%"
    users = (db.query(User)
             .filter(User.organization_id == user.organization_id,
                     or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))
             .order_by(User.name).limit(USER_SEARCH_LIMIT).all())
    return [{**u.to_public(), "avatarUrl": u.avatar_url, "role": u.role} for u in users]


@router.get("/{user_id}")
def get_user(user_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    def fetch():
        other = db.get(User, user_id)
        return other.to_dict() if other else None

    data = cache_or_fetch(cache_keys.user(user_id), fetch, CACHE_TTL_USER)
    # a cache hit may belong to another tenant
    if not data or data["organizationId"] != user.organization_id:
        raise HTTPException(status_code=404, detail="User not found")
    return data
