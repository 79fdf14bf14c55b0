"""
Admin Audit Log Model

One row per scheduler run ('price_sync'), written by the system actor.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String

from cardboom_pricing.core.database import Base, JSONType
from cardboom_pricing.core.utils import utcnow


class AdminAuditLog(Base):
    __tablename__ = "admin_audit_log"

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False)  # 'price_sync'
    actor = Column(String(50), nullable=False, default="system")
    details = Column(JSONType)  # mode, duration_ms, counters, per-source breakdown
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_admin_audit_log_action_created", "action", "created_at"),
    )
