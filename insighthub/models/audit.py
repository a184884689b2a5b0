from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from insighthub.db.base import Base, utcnow, iso
from insighthub.models.user import User


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True)
    action = Column(String, index=True, nullable=False)
    resource_type = Column(String, index=True, nullable=False)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, default=dict)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    user = relationship(User)

    def to_dict(self, include_user=True):
        data = {
            "id": self.id, "organizationId": self.organization_id, "userId": self.user_id,
            "action": self.action, "resourceType": self.resource_type,
            "resourceId": self.resource_id, "details": self.details or {},
            "ipAddress": self.ip_address, "userAgent": self.user_agent,
            "createdAt": iso(self.created_at),
        }
        if include_user:
            data["user"] = self.user.to_public() if self.user else None
        return data
