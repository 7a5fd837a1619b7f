"""
Patient service — creation, doctor-scoped lookup, and visit updates.

Every function goes through the :class:`RecordStore` so that live
subscriptions observe the change, whichever surface (REST or socket view)
made it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from app.models.patient import EDITABLE_FIELDS
from app.services.record_store import PATIENTS, RecordStore, utc_timestamp

logger = logging.getLogger(__name__)


def editable_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the fields a doctor may edit, coercing ``None`` to ``""``."""
    return {
        key: "" if data[key] is None else str(data[key])
        for key in EDITABLE_FIELDS
        if key in data
    }


async def create_patient(
    store: RecordStore,
    *,
    doctor_id: str,
    name: str,
    age: str = "",
    blood_pressure: str = "",
    disease: str = "",
    prescription: str = "",
    patient_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Register a new patient owned by *doctor_id*.

    The first visit is the creation itself, so ``last_visit_date`` starts out
    equal to ``created_at``.
    """
    stamp = utc_timestamp(now)
    record = await store.add(
        PATIENTS,
        {
            "name": name,
            "age": age,
            "blood_pressure": blood_pressure,
            "disease": disease,
            "prescription": prescription,
            "doctor_id": doctor_id,
            "created_at": stamp,
            "last_visit_date": stamp,
        },
        record_id=patient_id,
    )
    logger.info("Doctor %s created patient %s", doctor_id, record["id"])
    return record


async def find_patient_for_doctor(
    store: RecordStore,
    doctor_id: str,
    patient_id: str,
) -> dict[str, Any] | None:
    """Return the patient with *patient_id* if it belongs to *doctor_id*.

    A record owned by another doctor is indistinguishable from a missing one.
    """
    matches = await store.query_by_fields(PATIENTS, {"doctor_id": doctor_id, "id": patient_id})
    if not matches:
        return None
    return matches[0]


async def record_visit(
    store: RecordStore,
    patient_id: str,
    fields: dict[str, Any],
    *,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Apply an edit to a patient record.

    Only editable fields are written; ``last_visit_date`` is always set to the
    submission time, whatever *fields* contains.
    """
    update = editable_fields(fields)
    update["last_visit_date"] = utc_timestamp(now)
    return await store.update_partial(PATIENTS, patient_id, update)
