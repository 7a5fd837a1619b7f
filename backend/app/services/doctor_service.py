"""
Doctor account service — signup, lookup and credential checks.

All public functions accept an ``AsyncSession`` so the caller controls the
transaction boundary.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.middleware.auth import hash_password, verify_password
from app.models.doctor import Doctor

logger = logging.getLogger(__name__)


class DoctorExists(Exception):
    """Username or email is already registered."""


def _doctor_to_dict(doctor: Doctor) -> dict[str, Any]:
    return {
        "id": doctor.id,
        "username": doctor.username,
        "email": doctor.email,
        "name": doctor.name,
        "department": doctor.department,
        "specialization": doctor.specialization,
        "is_active": doctor.is_active,
        "created_at": doctor.created_at.isoformat() if doctor.created_at else None,
    }


async def create_doctor(
    db: AsyncSession,
    *,
    username: str,
    password: str,
    name: str = "",
    email: Optional[str] = None,
    department: Optional[str] = None,
    specialization: Optional[str] = None,
) -> dict[str, Any]:
    clauses = [Doctor.username == username]
    if email:
        clauses.append(Doctor.email == email)
    existing = await db.execute(select(Doctor.id).where(or_(*clauses)))
    if existing.first() is not None:
        raise DoctorExists(username)

    doctor = Doctor(
        username=username,
        email=email or None,
        hashed_password=hash_password(password),
        name=name,
        department=department,
        specialization=specialization,
        is_active=True,
    )
    db.add(doctor)
    await db.flush()
    await db.refresh(doctor)
    logger.info("Registered doctor %s (%s)", doctor.id, username)
    return _doctor_to_dict(doctor)


async def get_doctor(db: AsyncSession, doctor_id: str) -> dict[str, Any] | None:
    doctor = await db.get(Doctor, doctor_id)
    return _doctor_to_dict(doctor) if doctor is not None else None


async def get_doctor_by_username(db: AsyncSession, username: str) -> Doctor | None:
    """Return the raw ORM model — the caller needs the password hash."""
    result = await db.execute(select(Doctor).where(Doctor.username == username))
    return result.scalar_one_or_none()


async def authenticate(db: AsyncSession, username: str, password: str) -> dict[str, Any] | None:
    """Return the doctor for valid, active credentials, else ``None``."""
    doctor = await get_doctor_by_username(db, username)
    if doctor is None or not verify_password(password, doctor.hashed_password):
        logger.info("Rejected login for %s", username)
        return None
    if not doctor.is_active:
        logger.info("Rejected login for deactivated account %s", username)
        return None
    return _doctor_to_dict(doctor)
