from sqlalchemy.orm import Session

from insighthub.core.config import settings
from insighthub.core.constants import ROLE_OWNER
from insighthub.core.logging import get_logger
from insighthub.core.security import hash_password
from insighthub.db.session import SessionLocal
from insighthub.models.user import Organization, User
from insighthub.services.organizations import unique_slug

logger = get_logger(__name__)


def seed_admin(db: Session):
    """Make sure the default organization and its owner exist."""
    user = db.query(User).filter(User.email == settings.ADMIN_EMAIL.lower()).first()
    if user:
        logger.info(f"Owner user already exists: {user.email}")
        return user

    org = db.query(Organization).filter(Organization.name == settings.ADMIN_ORG).first()
    if not org:
        org = Organization(name=settings.ADMIN_ORG, slug=unique_slug(db, settings.ADMIN_ORG))
        db.add(org); db.flush()
    user = User(email=settings.ADMIN_EMAIL.lower(), name=settings.ADMIN_NAME, role=ROLE_OWNER,
                hashed_password=hash_password(settings.ADMIN_PASSWORD), organization_id=org.id)
    db.add(user); db.commit()
    logger.info(f"Owner user created: {user.email}")
    return user


if __name__ == "__main__":
    from insighthub.db.base import init_db

    init_db()
    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()
