from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from insighthub.db.base import Base, utcnow, iso


class AnalyticsEvent(Base):
    __tablename__ = "analytics_events"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    event_type = Column(String, index=True, nullable=False)
    event_name = Column(String, nullable=False)
    properties = Column(JSON, default=dict)
    user_id = Column(String, nullable=True)
    session_id = Column(String, nullable=True)
    timestamp = Column(DateTime, default=utcnow, index=True)
    source = Column(String, default="api", nullable=False)

    def to_dict(self):
        return {
            "id": self.id, "organizationId": self.organization_id,
            "eventType": self.event_type, "eventName": self.event_name,
            "properties": self.properties or {}, "userId": self.user_id,
            "sessionId": self.session_id, "timestamp": iso(self.timestamp), "source": self.source,
        }
