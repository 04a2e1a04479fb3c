from datetime import datetime

from frontdesk.models.patient import Patient, PatientVisit
from frontdesk.patients import PatientDetails, record_visit, upsert_patient

NOW = datetime(2026, 1, 5, 7, 0)


def test_upsert_patient_creates_new_patient(store, scheduler_db) -> None:
    patient_id = store.run_atomic(
        lambda tx: upsert_patient(tx, PatientDetails(name=' Meera ', phone='98470 11111', age=34), NOW)
    )

    patient = scheduler_db.get(Patient, patient_id)
    assert patient.name == 'Meera'
    assert patient.phone == '9847011111'
    assert patient.total_appointments == 0


def test_upsert_patient_matches_on_phone_and_name(store, scheduler_db) -> None:
    first = store.run_atomic(lambda tx: upsert_patient(tx, PatientDetails(name='Meera', phone='9847011111'), NOW))
    second = store.run_atomic(
        lambda tx: upsert_patient(tx, PatientDetails(name='Meera', phone='98470-11111', place='Kochi'), NOW)
    )
    sibling = store.run_atomic(lambda tx: upsert_patient(tx, PatientDetails(name='Arjun', phone='9847011111'), NOW))

    assert first == second
    assert sibling != first
    assert scheduler_db.get(Patient, first).place == 'Kochi'


def test_patients_without_phone_are_never_merged(store, scheduler_db) -> None:
    store.run_atomic(lambda tx: upsert_patient(tx, PatientDetails(name='Meera'), NOW))
    store.run_atomic(lambda tx: upsert_patient(tx, PatientDetails(name='Meera'), NOW))

    assert scheduler_db.query(Patient).count() == 2


def test_record_visit_increments_appointment_total(store, scheduler_db) -> None:
    patient_id = store.run_atomic(lambda tx: upsert_patient(tx, PatientDetails(name='Meera', phone='9847011111'), NOW))

    store.run_atomic(lambda tx: record_visit(tx, patient_id, 7, 'clinic-1', NOW))

    assert scheduler_db.get(Patient, patient_id).total_appointments == 1
    visit = scheduler_db.query(PatientVisit).one()
    assert (visit.appointment_id, visit.clinic_id) == (7, 'clinic-1')
