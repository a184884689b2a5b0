"""
services/organizations.py
-------------------------
Tenant lifecycle: slug allocation on signup and full removal of an
organization with everything it owns.
"""

import re

from sqlalchemy.orm import Session

from insighthub.core.constants import ROLE_OWNER
from insighthub.core.logging import get_logger
from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.audit import AuditLog
from insighthub.models.billing import Invoice, UsageRecord
from insighthub.models.comment import Comment
from insighthub.models.dashboard import Dashboard, Widget
from insighthub.models.notification import Notification
from insighthub.models.user import ApiKey, Organization, Session as UserSession, User
from insighthub.models.webhook import Webhook, WebhookDelivery

logger = get_logger(__name__)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "org"


def unique_slug(db: Session, name: str) -> str:
    """``acme``, then ``acme-2``, ``acme-3``... until no organization uses it."""
    base = slugify(name)
    slug, n = base, 1
    while db.query(Organization.id).filter(Organization.slug == slug).first():
        n += 1
        slug = f"{base}-{n}"
    return slug


def purge_organization(db: Session, organization_id: int) -> None:
    """Delete an organization and all tenant rows, children before parents."""
    user_ids = db.query(User.id).filter(User.organization_id == organization_id)
    webhook_ids = db.query(Webhook.id).filter(Webhook.organization_id == organization_id)

    db.query(Widget).filter(Widget.organization_id == organization_id).delete(synchronize_session=False)
    db.query(Dashboard).filter(Dashboard.organization_id == organization_id).delete(synchronize_session=False)
    db.query(WebhookDelivery).filter(WebhookDelivery.webhook_id.in_(webhook_ids)).delete(synchronize_session=False)
    for model in (Webhook, ApiKey, AnalyticsEvent, AuditLog, Notification, Invoice, UsageRecord):
        db.query(model).filter(model.organization_id == organization_id).delete(synchronize_session=False)
    # replies first so parent_id never points at a deleted row
    db.query(Comment).filter(Comment.organization_id == organization_id,
                             Comment.parent_id.isnot(None)).delete(synchronize_session=False)
    db.query(Comment).filter(Comment.organization_id == organization_id).delete(synchronize_session=False)
    db.query(UserSession).filter(UserSession.user_id.in_(user_ids)).delete(synchronize_session=False)
    db.query(User).filter(User.organization_id == organization_id).delete(synchronize_session=False)
    db.query(Organization).filter(Organization.id == organization_id).delete(synchronize_session=False)
    db.commit()
    db.expire_all()
    logger.info(f"Organization {organization_id} deleted")


def remove_user(db: Session, user: User) -> None:
    """
    Delete one member; their audit trail stays with ``user_id`` cleared.

    Dashboards and API keys they created are handed to the organization owner.
    """
    owner_id = (db.query(User.id)
                .filter(User.organization_id == user.organization_id, User.role == ROLE_OWNER,
                        User.id != user.id)
                .limit(1).scalar())
    if owner_id is not None:
        for model in (Dashboard, ApiKey):
            db.query(model).filter(model.created_by_id == user.id).update(
                {model.created_by_id: owner_id}, synchronize_session=False)
    own_comments = db.query(Comment.id).filter(Comment.user_id == user.id)
    db.query(Comment).filter(Comment.parent_id.in_(own_comments)).delete(synchronize_session=False)
    db.query(AuditLog).filter(AuditLog.user_id == user.id).update(
        {AuditLog.user_id: None}, synchronize_session=False)
    db.query(Notification).filter(Notification.user_id == user.id).delete(synchronize_session=False)
    db.query(Comment).filter(Comment.user_id == user.id).delete(synchronize_session=False)
    db.delete(user)
    db.commit()
