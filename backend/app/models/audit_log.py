import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Index

from app.db.database import Base

AUDIT_ACTIONS = ("read", "create", "update", "login")


class AuditLog(Base):
    """Who touched which patient record or account, and from where."""

    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_resource", "resource", "resource_id"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    doctor_id = Column(String(36), nullable=True, index=True)
    action = Column(String(16), nullable=False)
    resource = Column(String(32), nullable=False)  # "patient" or "doctor"
    resource_id = Column(String(64), nullable=True)
    details = Column(String, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
