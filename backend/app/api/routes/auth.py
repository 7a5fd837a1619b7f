"""
Doctor authentication routes.

Endpoints:
    POST /auth/signup  — Create a doctor account (returns JWT)
    POST /auth/login   — Authenticate by username/password (returns JWT)
    GET  /auth/me      — Profile of the signed-in doctor
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.db.database import get_db
from app.models.doctor import Doctor
from app.api.middleware.auth import get_current_doctor, token_for_doctor
from app.api.middleware.audit import record_audit
from app.api.middleware.rate_limit import rate_limit
from app.services import doctor_service

router = APIRouter()
settings = get_settings()


class SignupRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=64)
    password: str = Field(..., min_length=8, max_length=72)
    name: str = Field("", max_length=200)
    email: Optional[str] = None
    department: Optional[str] = None
    specialization: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class DoctorResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    name: str
    department: Optional[str] = None
    specialization: Optional[str] = None


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    doctor: DoctorResponse


@router.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(
    payload: SignupRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Register a doctor and sign them straight in."""
    try:
        doctor = await doctor_service.create_doctor(
            db,
            username=payload.username,
            password=payload.password,
            name=payload.name,
            email=payload.email,
            department=payload.department,
            specialization=payload.specialization,
        )
    except doctor_service.DoctorExists:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Username or email already registered",
        )

    await record_audit(
        db,
        "create",
        "doctor",
        doctor["id"],
        doctor_id=doctor["id"],
        details="Doctor account created",
        request=request,
    )
    return AuthResponse(access_token=token_for_doctor(doctor), doctor=DoctorResponse(**doctor))


@router.post(
    "/auth/login",
    response_model=AuthResponse,
    dependencies=[rate_limit(max_requests=settings.LOGIN_RATE_LIMIT, window_seconds=60, key_prefix="login")],
)
async def login(
    payload: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    doctor = await doctor_service.authenticate(db, payload.username, payload.password)
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    await record_audit(
        db,
        "login",
        "doctor",
        doctor["id"],
        doctor_id=doctor["id"],
        request=request,
    )
    return AuthResponse(access_token=token_for_doctor(doctor), doctor=DoctorResponse(**doctor))


@router.get("/auth/me", response_model=DoctorResponse)
async def me(current_doctor: Doctor = Depends(get_current_doctor)):
    return DoctorResponse(
        id=current_doctor.id,
        username=current_doctor.username,
        email=current_doctor.email,
        name=current_doctor.name,
        department=current_doctor.department,
        specialization=current_doctor.specialization,
    )
