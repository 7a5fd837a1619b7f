from app.models.doctor import Doctor
from app.models.patient import PatientRecord, EDITABLE_FIELDS
from app.models.audit_log import AuditLog

__all__ = [
    "Doctor",
    "PatientRecord",
    "EDITABLE_FIELDS",
    "AuditLog",
]
