"""
Audit trail for patient reads/writes and doctor sign-ins.

Entries are added to the request's session and committed with it, so a
failed request leaves no trail.
"""

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AUDIT_ACTIONS, AuditLog

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    action: str,
    resource: str,
    resource_id: Optional[str] = None,
    *,
    doctor_id: Optional[str] = None,
    details: Optional[str] = None,
    request: Optional[Request] = None,
) -> AuditLog:
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action {action!r}")

    client = request.client if request else None
    entry = AuditLog(
        doctor_id=doctor_id,
        action=action,
        resource=resource,
        resource_id=resource_id,
        details=details,
        ip_address=client.host if client else None,
        user_agent=request.headers.get("user-agent") if request else None,
    )
    db.add(entry)
    await db.flush()
    logger.debug("audit %s %s/%s by %s", action, resource, resource_id, doctor_id)
    return entry
