from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Text
from insighthub.db.base import Base, utcnow, iso


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    type = Column(String, default="info", nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    link = Column(String, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id, "userId": self.user_id, "type": self.type, "title": self.title,
            "message": self.message, "link": self.link, "isRead": self.is_read,
            "createdAt": iso(self.created_at),
        }


class EmailQueue(Base):
    __tablename__ = "email_queue"
    id = Column(Integer, primary_key=True)
    to = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    status = Column(String, default="pending", index=True, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(String, nullable=True)
    scheduled_for = Column(DateTime, default=utcnow, nullable=False)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
