"""Patient model definitions."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from frontdesk.database import Base


class Patient(Base):
    """Represents the patient identity the scheduler books against."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    phone = Column(String, index=True)
    age = Column(Integer)
    sex = Column(String)
    place = Column(String)
    total_appointments = Column(Integer, default=0)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class PatientVisit(Base):
    """One entry of a patient's visit history."""
    __tablename__ = "patient_visits"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), index=True)
    appointment_id = Column(Integer)
    clinic_id = Column(String)
    created_at = Column(DateTime)
