"""Walk-in pool model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from frontdesk.database import Base


class WalkInPoolEntry(Base):
    """Represents a walk-in registered before the session's consultation started."""
    __tablename__ = "walk_in_pool"

    id = Column(Integer, primary_key=True)
    clinic_id = Column(String, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"))
    doctor_name = Column(String)
    date = Column(Date)
    session_index = Column(Integer)
    patient_id = Column(Integer, ForeignKey("patients.id"))
    patient_name = Column(String)
    phone = Column(String)
    registered_at = Column(DateTime)
    status = Column(String, default="waiting")
    position = Column(Integer)
