from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from insighthub.api.deps import current_user, get_db
from insighthub.api.schemas import CreateNotificationBody
from insighthub.models.notification import Notification
from insighthub.models.user import User

router = APIRouter(prefix="/notifications", tags=["notifications"])

DEFAULT_NOTIFICATION_PREFERENCES = {
    "email": {"enabled": True, "digest": "daily", "types": ["system", "billing", "team"]},
    "inApp": {"enabled": True, "types": ["all"]},
    "push": {"enabled": False},
}


def _get_notification(db: Session, user: User, notification_id: int) -> Notification:
    n = (db.query(Notification)
         .filter(Notification.id == notification_id, Notification.user_id == user.id).first())
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    return n


def _mine(db: Session, user: User):
    return db.query(Notification).filter(Notification.user_id == user.id)


@router.get("")
def list_notifications(unread_only: bool = Query(False, alias="unreadOnly"),
                       limit: int = Query(50, ge=1, le=100),
                       user: User = Depends(current_user), db: Session = Depends(get_db)):
    q = _mine(db, user)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    return [n.to_dict() for n in rows]


@router.post("", status_code=201)
def create_notification(body: CreateNotificationBody, user: User = Depends(current_user),
                        db: Session = Depends(get_db)):
    target = (db.query(User)
              .filter(User.id == (body.user_id or user.id), User.organization_id == user.organization_id)
              .first())
    if not target:
        raise HTTPException(status_code=404, detail="User not found in organization")
    n = Notification(user_id=target.id, organization_id=user.organization_id, type=body.type,
                     title=body.title, message=body.message, link=body.link)
    db.add(n); db.commit()
    return n.to_dict()


@router.delete("")
def clear_notifications(user: User = Depends(current_user), db: Session = Depends(get_db)):
    deleted = _mine(db, user).delete(synchronize_session=False)
    db.commit()
    return {"message": "All notifications deleted", "deleted": deleted}


@router.get("/unread-count")
def unread_count(user: User = Depends(current_user), db: Session = Depends(get_db)):
    return {"count": _mine(db, user).filter(Notification.is_read.is_(False)).count()}


@router.put("/mark-all-read")
def mark_all_read(user: User = Depends(current_user), db: Session = Depends(get_db)):
    updated = (_mine(db, user).filter(Notification.is_read.is_(False))
               .update({Notification.is_read: True}, synchronize_session=False))
    db.commit()
    return {"message": "All notifications marked as read", "updated": updated}


@router.get("/preferences")
def get_preferences(user: User = Depends(current_user)):
    return {**DEFAULT_NOTIFICATION_PREFERENCES, **(user.preferences or {}).get("notifications", {})}


@router.put("/preferences")
def update_preferences(preferences: dict = Body(...), user: User = Depends(current_user),
                       db: Session = Depends(get_db)):
    stored = dict(user.preferences or {})
    stored["notifications"] = {**stored.get("notifications", {}), **preferences}
    user.preferences = stored
    db.commit()
    return {**DEFAULT_NOTIFICATION_PREFERENCES, **stored["notifications"]}


@router.put("/{notification_id}/read")
def mark_read(notification_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    n = _get_notification(db, user, notification_id)
    n.is_read = True
    db.commit()
    return n.to_dict()


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, user: User = Depends(current_user),
                        db: Session = Depends(get_db)):
    db.delete(_get_notification(db, user, notification_id))
    db.commit()
    return {"message": "Notification deleted"}
