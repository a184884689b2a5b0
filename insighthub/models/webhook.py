from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship
from insighthub.db.base import Base, utcnow, iso
from insighthub.core.constants import WEBHOOK_WILDCARD


class Webhook(Base):
    __tablename__ = "webhooks"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    secret = Column(String, nullable=False)
    events = Column(JSON, default=lambda: [WEBHOOK_WILDCARD], nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    last_triggered_at = Column(DateTime, nullable=True)
    failure_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    deliveries = relationship("WebhookDelivery", back_populates="webhook", cascade="all, delete-orphan")

    def subscribes_to(self, event: str) -> bool:
        events = self.events or []
        return WEBHOOK_WILDCARD in events or event in events

    def to_dict(self, include_secret=False):
        data = {
            "id": self.id, "name": self.name, "url": self.url, "events": list(self.events or []),
            "organizationId": self.organization_id, "isActive": self.is_active,
            "lastTriggeredAt": iso(self.last_triggered_at), "failureCount": self.failure_count,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }
        if include_secret:
            data["secret"] = self.secret
        return data


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"
    id = Column(Integer, primary_key=True)
    webhook_id = Column(Integer, ForeignKey("webhooks.id", ondelete="CASCADE"), index=True, nullable=False)
    event = Column(String, nullable=False)
    payload = Column(JSON, default=dict)
    status_code = Column(Integer, nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    response = Column(String, nullable=True)
    error = Column(String, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    webhook = relationship("Webhook", back_populates="deliveries")

    def to_dict(self):
        return {
            "id": self.id, "webhookId": self.webhook_id, "event": self.event,
            "statusCode": self.status_code, "success": self.success,
            "response": self.response, "error": self.error, "durationMs": self.duration_ms,
            "createdAt": iso(self.created_at),
        }
