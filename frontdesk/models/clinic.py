"""Clinic and doctor model definitions."""

from sqlalchemy import Column, Float, ForeignKey, Integer, String
from frontdesk.database import Base


class Clinic(Base):
    """Represents a clinic and its scheduling overrides."""
    __tablename__ = "clinics"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    walk_in_token_allotment = Column(Integer)  # walk-in spacing N, config default when null
    advance_ratio = Column(Float)


class Doctor(Base):
    """Represents a consulting doctor."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    clinic_id = Column(String, ForeignKey("clinics.id"), index=True)
    name = Column(String, nullable=False)
    department = Column(String)
    average_consulting_time = Column(Integer)  # minutes per slot
