from datetime import datetime

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.utcnow()


def iso(value):
    return value.isoformat() if value is not None else None


def init_db(bind=None) -> None:
    """Import every model module and create missing tables."""
    from insighthub.db.session import engine
    from insighthub.models import (  # noqa: F401
        user, dashboard, analytics, webhook, audit, notification, comment, billing,
    )
    Base.metadata.create_all(bind=bind or engine)
