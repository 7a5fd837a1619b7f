from sqlalchemy import Column, String, Text

from app.db.database import Base


# Fields a doctor may change from the search/edit screen.  ``id``,
# ``doctor_id`` and ``created_at`` are owned by the store.
EDITABLE_FIELDS = ("name", "age", "blood_pressure", "disease", "prescription")


class PatientRecord(Base):
    __tablename__ = "patients"

    # Opaque, store-assigned identifier; never rewritten once set
    id = Column(String(64), primary_key=True)
    name = Column(String, nullable=False, default="")

    # Free-text vitals, stored exactly as entered
    age = Column(String, nullable=False, default="")
    blood_pressure = Column(String, nullable=False, default="")
    disease = Column(String, nullable=False, default="")
    prescription = Column(Text, nullable=False, default="")

    doctor_id = Column(String(36), nullable=False, index=True)
    created_at = Column(String, nullable=False)       # ISO-8601
    last_visit_date = Column(String, nullable=False)  # ISO-8601, rewritten on every edit
