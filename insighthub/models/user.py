from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Float, JSON
from sqlalchemy.orm import relationship
from insighthub.db.base import Base, utcnow, iso


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    tier = Column(String, default="free", nullable=False)
    monthly_budget = Column(Float, default=0.0, nullable=False)
    current_spend = Column(Float, default=0.0, nullable=False)
    budget_alert_threshold = Column(Float, nullable=True)
    payment_method_id = Column(String, nullable=True)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    users = relationship("User", back_populates="organization", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "slug": self.slug, "tier": self.tier,
            "monthlyBudget": self.monthly_budget, "currentSpend": self.current_spend,
            "budgetAlertThreshold": self.budget_alert_threshold,
            "hasPaymentMethod": bool(self.payment_method_id),
            "settings": self.settings or {},
            "createdAt": iso(self.created_at), "updatedAt": iso(self.updated_at),
        }


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, default="member", nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    invited = Column(Boolean, default=False, nullable=False)
    avatar_url = Column(String, nullable=True)
    preferences = Column(JSON, default=dict)
    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    organization = relationship("Organization", back_populates="users")
    sessions = relationship("Session", back_populates="user", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id, "email": self.email, "name": self.name, "role": self.role,
            "organizationId": self.organization_id, "isActive": self.is_active,
            "avatarUrl": self.avatar_url, "createdAt": iso(self.created_at),
            "lastLoginAt": iso(self.last_login_at),
        }

    def to_public(self):
        return {"id": self.id, "name": self.name, "email": self.email}


class Session(Base):
    __tablename__ = "sessions"
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    user_agent = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    user = relationship("User", back_populates="sessions")

    def to_dict(self, current_id=None):
        return {
            "id": self.id, "userAgent": self.user_agent, "ipAddress": self.ip_address,
            "createdAt": iso(self.created_at), "expiresAt": iso(self.expires_at),
            "current": self.id == current_id,
        }


class ApiKey(Base):
    __tablename__ = "api_keys"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    key_hash = Column(String, unique=True, index=True, nullable=False)
    key_prefix = Column(String, nullable=False)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    permissions = Column(JSON, default=lambda: ["read"])
    last_used_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    created_by = relationship("User")

    def to_dict(self):
        return {
            "id": self.id, "name": self.name, "keyPrefix": self.key_prefix,
            "permissions": self.permissions or [], "isActive": self.is_active,
            "lastUsedAt": iso(self.last_used_at), "expiresAt": iso(self.expires_at),
            "createdAt": iso(self.created_at),
            "createdBy": self.created_by.to_public() if self.created_by else None,
        }
