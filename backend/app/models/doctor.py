import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean

from app.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String, unique=True, nullable=False, index=True)
    email = Column(String, unique=True, nullable=True)
    hashed_password = Column(String, nullable=False)

    # Profile shown next to every page (name, department, specialization)
    name = Column(String, nullable=False, default="")
    department = Column(String, nullable=True)
    specialization = Column(String, nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
