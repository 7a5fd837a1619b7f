"""
Patient record API routes.

Every endpoint is scoped to the signed-in doctor: a record owned by someone
else answers exactly like a missing one.

Endpoints:
    POST  /patients                   — Create a patient record
    GET   /patients/search?patientId= — Resolve a typed patient ID
    GET   /patients/{id}              — Get one patient record
    PATCH /patients/{id}              — Edit a record (stamps last_visit_date)
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_db
from app.models.doctor import Doctor
from app.api.middleware.auth import get_current_doctor
from app.api.middleware.audit import record_audit
from app.services import patient_service
from app.services.record_store import RecordStore, StoreError, get_record_store

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class PatientCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    age: str = ""
    blood_pressure: str = ""
    disease: str = ""
    prescription: str = ""


class PatientUpdateRequest(BaseModel):
    name: Optional[str] = None
    age: Optional[str] = None
    blood_pressure: Optional[str] = None
    disease: Optional[str] = None
    prescription: Optional[str] = None


class PatientResponse(BaseModel):
    id: str
    name: str
    age: str
    blood_pressure: str
    disease: str
    prescription: str
    doctor_id: str
    created_at: str
    last_visit_date: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _scoped_patient(store: RecordStore, doctor: Doctor, patient_id: str) -> dict:
    try:
        patient = await patient_service.find_patient_for_doctor(store, doctor.id, patient_id)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Record store unavailable",
        )
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No patient found with that ID",
        )
    return patient


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/patients", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
async def create_patient(
    payload: PatientCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
    current_doctor: Doctor = Depends(get_current_doctor),
):
    """Create a patient record owned by the calling doctor."""
    try:
        patient = await patient_service.create_patient(
            store,
            doctor_id=current_doctor.id,
            **payload.model_dump(),
        )
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to create patient",
        )

    await record_audit(
        db,
        "create",
        "patient",
        patient["id"],
        doctor_id=current_doctor.id,
        request=request,
    )
    return patient


@router.get("/patients/search", response_model=PatientResponse)
async def search_patient(
    request: Request,
    patient_id: str = Query("", alias="patientId"),
    db: AsyncSession = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
    current_doctor: Doctor = Depends(get_current_doctor),
):
    """Resolve a patient ID typed by the doctor."""
    patient_id = patient_id.strip()
    if not patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Please enter a patient ID",
        )
    patient = await _scoped_patient(store, current_doctor, patient_id)

    await record_audit(
        db,
        "read",
        "patient",
        patient["id"],
        doctor_id=current_doctor.id,
        details="search",
        request=request,
    )
    return patient


@router.get("/patients/{patient_id}", response_model=PatientResponse)
async def get_patient(
    patient_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
    current_doctor: Doctor = Depends(get_current_doctor),
):
    patient = await _scoped_patient(store, current_doctor, patient_id)

    await record_audit(
        db,
        "read",
        "patient",
        patient["id"],
        doctor_id=current_doctor.id,
        request=request,
    )
    return patient


@router.patch("/patients/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: str,
    payload: PatientUpdateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
    current_doctor: Doctor = Depends(get_current_doctor),
):
    """Edit a patient record.  ``last_visit_date`` is set to now on every edit."""
    update_data = payload.model_dump(exclude_unset=True)
    if not update_data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No fields to update",
        )

    await _scoped_patient(store, current_doctor, patient_id)
    try:
        patient = await patient_service.record_visit(store, patient_id, update_data)
    except StoreError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Failed to update patient information",
        )

    await record_audit(
        db,
        "update",
        "patient",
        patient_id,
        doctor_id=current_doctor.id,
        details=f"Patient updated: {sorted(update_data)}",
        request=request,
    )
    return patient
