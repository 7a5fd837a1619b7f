"""
Authentication session for one connected client.

Holds the signed-in doctor for the lifetime of a connection and is injected
into views, which read ``current_user_id`` and ``loading`` from it.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.middleware.auth import read_token, token_for_doctor
from app.services import doctor_service

logger = logging.getLogger(__name__)


class InvalidCredentials(Exception):
    """Unknown username, wrong password or deactivated account."""


class AuthSession:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self.current_user: Optional[dict[str, Any]] = None
        self.token: Optional[str] = None
        self.loading = False

    @property
    def current_user_id(self) -> Optional[str]:
        return self.current_user["id"] if self.current_user else None

    @property
    def is_authenticated(self) -> bool:
        return self.current_user is not None

    async def login(self, username: str, password: str) -> str:
        """Sign in and return a fresh access token."""
        self.loading = True
        try:
            async with self._session_factory() as db:
                doctor = await doctor_service.authenticate(db, username, password)
        finally:
            self.loading = False
        if doctor is None:
            raise InvalidCredentials(username)
        self.current_user = doctor
        self.token = token_for_doctor(doctor)
        logger.info("Doctor %s signed in", doctor["id"])
        return self.token

    async def restore(self, token: Optional[str]) -> Optional[dict[str, Any]]:
        """Resume a session from an access token; leaves it signed out when invalid."""
        self.current_user = None
        self.token = None
        token_data = read_token(token) if token else None
        if token_data is None:
            return None
        self.loading = True
        try:
            async with self._session_factory() as db:
                doctor = await doctor_service.get_doctor(db, token_data.doctor_id)
        finally:
            self.loading = False
        if doctor is None or not doctor["is_active"]:
            return None
        self.current_user = doctor
        self.token = token
        return doctor

    def logout(self) -> None:
        if self.current_user:
            logger.info("Doctor %s signed out", self.current_user["id"])
        self.current_user = None
        self.token = None
