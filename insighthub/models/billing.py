from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, UniqueConstraint
from insighthub.db.base import Base, utcnow, iso


class Invoice(Base):
    __tablename__ = "invoices"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String, default="usd", nullable=False)
    status = Column(String, default="draft", nullable=False)
    description = Column(String, nullable=True)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id, "organizationId": self.organization_id, "amount": self.amount,
            "currency": self.currency, "status": self.status, "description": self.description,
            "periodStart": iso(self.period_start), "periodEnd": iso(self.period_end),
            "paidAt": iso(self.paid_at), "createdAt": iso(self.created_at),
        }


class UsageRecord(Base):
    __tablename__ = "usage_records"
    id = Column(Integer, primary_key=True)
    organization_id = Column(Integer, ForeignKey("organizations.id", ondelete="CASCADE"), index=True, nullable=False)
    metric = Column(String, nullable=False)
    value = Column(Float, nullable=False)
    period_start = Column(DateTime, nullable=False)
    period_end = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    __table_args__ = (UniqueConstraint("organization_id", "metric", "period_start", name="uq_usage_period"),)
