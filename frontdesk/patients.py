"""Patient collaborator: identity lookup and visit history."""

from dataclasses import dataclass
from datetime import datetime

from frontdesk.models.patient import Patient, PatientVisit
from frontdesk.storage import TransactionalStore


@dataclass(frozen=True)
class PatientDetails:
    name: str
    phone: str | None = None
    age: int | None = None
    sex: str | None = None
    place: str | None = None


def _normalize_phone(phone: str | None) -> str | None:
    if phone is None:
        return None
    digits = ''.join(character for character in phone if character.isdigit() or character == '+')
    return digits or None


def upsert_patient(store: TransactionalStore, details: PatientDetails, now: datetime | None = None) -> int:
    """Return the id of the patient matching ``details``, creating one if needed.

    Patients are matched on phone number and name; a match gets its
    demographic fields refreshed.
    """
    now = now or datetime.now()
    name = details.name.strip()
    phone = _normalize_phone(details.phone)

    existing = store.find(Patient, phone=phone, name=name) if phone else []
    if existing:
        patient = existing[0]
        changes = {
            field_name: value
            for field_name, value in (('age', details.age), ('sex', details.sex), ('place', details.place))
            if value is not None
        }
        store.update(patient, updated_at=now, **changes)
        return patient.id

    patient = store.create(
        Patient(
            name=name,
            phone=phone,
            age=details.age,
            sex=details.sex,
            place=details.place,
            total_appointments=0,
            created_at=now,
            updated_at=now,
        )
    )
    return patient.id


def record_visit(
    store: TransactionalStore,
    patient_id: int,
    appointment_id: int,
    clinic_id: str | None,
    now: datetime | None = None,
) -> None:
    now = now or datetime.now()
    patient = store.get(Patient, patient_id)
    if patient is None:
        return

    store.create(PatientVisit(patient_id=patient_id, appointment_id=appointment_id, clinic_id=clinic_id, created_at=now))
    store.update(patient, total_appointments=(patient.total_appointments or 0) + 1, updated_at=now)
