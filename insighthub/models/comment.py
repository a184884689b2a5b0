from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from insighthub.db.base import Base, utcnow, iso
from insighthub.models.user import User


class Comment(Base):
    __tablename__ = "comments"
    id = Column(Integer, primary_key=True)
    content = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    resource_type = Column(String, nullable=False)
    resource_id = Column(String, nullable=False)
    parent_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    user = relationship(User)

    def to_dict(self):
        return {
            "id": self.id, "content": self.content, "userId": self.user_id,
            "user": self.user.to_public() if self.user else None,
            "resourceType": self.resource_type, "resourceId": self.resource_id,
            "parentId": self.parent_id, "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
