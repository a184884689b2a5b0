from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship
from insighthub.db.base import Base, utcnow, iso
from insighthub.core.constants import DEFAULT_WIDGET_POSITION, WIDGET_REFRESH_DEFAULT
from insighthub.models.user import User


class Dashboard(Base):
    __tablename__ = "dashboards"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    layout = Column(String, default="grid", nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    settings = Column(JSON, default=dict)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    created_by = relationship(User)
    widgets = relationship("Widget", back_populates="dashboard", cascade="all, delete-orphan",
                           order_by="Widget.id")

    def to_dict(self, include_widgets=False):
        data = {
            "id": self.id, "name": self.name, "description": self.description,
            "layout": self.layout, "isPublic": self.is_public, "settings": self.settings or {},
            "organizationId": self.organization_id, "createdById": self.created_by_id,
            "createdBy": self.created_by.to_public() if self.created_by else None,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
            "widgetCount": len(self.widgets),
        }
        if include_widgets:
            data["widgets"] = [w.to_dict() for w in self.widgets]
        return data


class Widget(Base):
    __tablename__ = "widgets"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    config = Column(JSON, default=dict)
    position = Column(JSON, default=lambda: dict(DEFAULT_WIDGET_POSITION))
    data_source = Column(String, nullable=True)
    refresh_interval = Column(Integer, default=WIDGET_REFRESH_DEFAULT, nullable=False)
    dashboard_id = Column(Integer, ForeignKey("dashboards.id", ondelete="CASCADE"), index=True, nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    dashboard = relationship("Dashboard", back_populates="widgets")

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "type": self.type, "config": self.config or {},
            "position": self.position or dict(DEFAULT_WIDGET_POSITION),
            "dataSource": self.data_source, "refreshInterval": self.refresh_interval,
            "dashboardId": self.dashboard_id, "organizationId": self.organization_id,
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }
