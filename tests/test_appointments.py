"""Booking, collision checks, filtering, transitions and cascades for appointments."""

from datetime import datetime, timedelta, timezone

import pytest

import crud
import models
from exceptions import ConflictError, DependencyError, NotFoundError, ReferenceError, ValidationError


def _book(db, pet, vet, when, **fields):
    return crud.create_appointment(db, dict(pet_id=pet.pet_id, vet_id=vet.vet_id, appointment_datetime=when, **fields))


def test_create_appointment_defaults(db, appointment, slot):
    assert appointment.status == "scheduled"
    assert appointment.appointment_datetime == slot
    assert appointment.created_by == "reception1"
    assert appointment.created_at is not None
    assert appointment.updated_at is not None
    assert len(appointment.services) == 2


def test_appointment_datetime_is_required(db, pet, vet):
    with pytest.raises(ValidationError) as exc:
        crud.create_appointment(db, {"pet_id": pet.pet_id, "vet_id": vet.vet_id})
    assert exc.value.field == "appointment_datetime"


def test_malformed_datetime_is_rejected(db, pet, vet):
    with pytest.raises(ValidationError):
        _book(db, pet, vet, "next tuesday")


def test_status_must_be_known_value(db, pet, vet, slot):
    with pytest.raises(ValidationError) as exc:
        _book(db, pet, vet, slot, status="no_show")
    assert exc.value.field == "status"


def test_same_vet_same_datetime_conflicts(db, appointment, second_pet, vet, slot):
    with pytest.raises(ConflictError) as exc:
        _book(db, second_pet, vet, slot)
    assert exc.value.entity == "appointments"
    assert len(crud.list_appointments(db, vet_id=vet.vet_id)) == 1


def test_collision_ignores_sub_second_precision(db, appointment, second_pet, vet, slot):
    with pytest.raises(ConflictError):
        _book(db, second_pet, vet, slot.replace(microsecond=250000))


def test_collision_compares_in_utc(db, appointment, second_pet, vet):
    nairobi = timezone(timedelta(hours=3))
    with pytest.raises(ConflictError):
        _book(db, second_pet, vet, datetime(2025, 9, 20, 13, 0, 0, tzinfo=nairobi))


def test_other_vet_same_datetime_is_allowed(db, appointment, second_pet, slot):
    other_vet = crud.create_vet(db, {"first_name": "Dr. Mary", "last_name": "Kariuki", "license_number": "LIC-2019-045"})
    booked = _book(db, second_pet, other_vet, slot)
    assert booked.appointment_id != appointment.appointment_id


def test_missing_pet_or_vet_is_a_reference_error(db, pet, vet, slot):
    with pytest.raises(ReferenceError) as exc:
        crud.create_appointment(db, {"pet_id": 999, "vet_id": vet.vet_id, "appointment_datetime": slot})
    assert exc.value.field == "pet_id"
    with pytest.raises(ReferenceError) as exc:
        crud.create_appointment(db, {"pet_id": pet.pet_id, "vet_id": 999, "appointment_datetime": slot})
    assert exc.value.field == "vet_id"


def test_failed_service_attachment_books_nothing(db, pet, vet, checkup, slot):
    with pytest.raises(ReferenceError):
        _book(db, pet, vet, slot, services=[{"service_id": checkup.service_id}, {"service_id": 999}])
    assert crud.list_appointments(db) == []
    assert db.query(models.AppointmentServices).count() == 0


def test_duplicate_service_in_booking_is_rejected(db, pet, vet, checkup, slot):
    with pytest.raises(ValidationError):
        _book(db, pet, vet, slot, services=[{"service_id": checkup.service_id}, {"service_id": checkup.service_id}])


def test_update_datetime_rechecks_slot(db, appointment, second_pet, vet, slot):
    later = _book(db, second_pet, vet, slot + timedelta(hours=1))
    with pytest.raises(ConflictError):
        crud.update_appointment(db, later.appointment_id, {"appointment_datetime": slot})
    assert crud.get_appointment(db, later.appointment_id).appointment_datetime == slot + timedelta(hours=1)


def test_update_to_own_slot_is_not_a_conflict(db, appointment, slot):
    updated = crud.update_appointment(db, appointment.appointment_id, {"appointment_datetime": slot, "notes": "bring records"})
    assert updated.notes == "bring records"


def test_update_vet_rechecks_slot(db, appointment, second_pet, slot):
    other_vet = crud.create_vet(db, {"first_name": "Dr. Mary", "last_name": "Kariuki", "license_number": "LIC-2019-045"})
    moved = _book(db, second_pet, other_vet, slot)
    with pytest.raises(ConflictError):
        crud.update_appointment(db, moved.appointment_id, {"vet_id": appointment.vet_id})


def test_update_refreshes_updated_at(db, appointment, monkeypatch):
    stamp = datetime(2030, 1, 1, 8, 30, 0)
    monkeypatch.setattr(crud, "utcnow", lambda: stamp)
    updated = crud.update_appointment(db, appointment.appointment_id, {"reason": "Limping"})
    assert updated.updated_at == stamp
    assert updated.created_at != stamp


def test_update_missing_appointment(db):
    with pytest.raises(NotFoundError):
        crud.update_appointment(db, 123, {"notes": "x"})


def test_list_appointments_filters(db, appointment, pet, second_pet, vet, slot):
    other_vet = crud.create_vet(db, {"first_name": "Dr. Mary", "last_name": "Kariuki", "license_number": "LIC-2019-045"})
    b = _book(db, second_pet, vet, slot + timedelta(days=1))
    c = _book(db, pet, other_vet, slot + timedelta(days=2), status="completed")

    def ids(**filters):
        return [a.appointment_id for a in crud.list_appointments(db, **filters)]

    assert ids() == [appointment.appointment_id, b.appointment_id, c.appointment_id]
    assert ids(vet_id=vet.vet_id) == [appointment.appointment_id, b.appointment_id]
    assert ids(pet_id=pet.pet_id) == [appointment.appointment_id, c.appointment_id]
    assert ids(status="completed") == [c.appointment_id]
    assert ids(start=slot + timedelta(days=1)) == [b.appointment_id, c.appointment_id]
    assert ids(start=slot, end=slot + timedelta(days=1)) == [appointment.appointment_id]
    assert ids(vet_id=vet.vet_id, status="cancelled") == []


def test_list_appointments_rejects_bad_filters(db, slot):
    with pytest.raises(ValidationError):
        crud.list_appointments(db, status="postponed")
    with pytest.raises(ValidationError):
        crud.list_appointments(db, start=slot, end=slot - timedelta(days=1))


def test_complete_and_cancel_transitions(db, appointment, second_pet, vet, slot):
    done = crud.complete_appointment(db, appointment.appointment_id)
    assert done.status == "completed"
    with pytest.raises(ValidationError):
        crud.complete_appointment(db, appointment.appointment_id)
    with pytest.raises(ValidationError):
        crud.cancel_appointment(db, appointment.appointment_id)

    other = _book(db, second_pet, vet, slot + timedelta(hours=2))
    assert crud.cancel_appointment(db, other.appointment_id).status == "cancelled"
    with pytest.raises(NotFoundError):
        crud.cancel_appointment(db, 999)


def test_delete_vet_with_appointments_is_refused(db, appointment, vet):
    with pytest.raises(DependencyError) as exc:
        crud.delete_vet(db, vet.vet_id)
    assert exc.value.field == "appointments"
    assert crud.get_vet(db, vet.vet_id) is not None


def test_delete_vet_without_appointments(db, vet):
    crud.delete_vet(db, vet.vet_id)
    assert crud.get_vet(db, vet.vet_id) is None


def test_deactivating_vet_leaves_bookings_alone(db, appointment, vet):
    crud.update_vet(db, vet.vet_id, {"is_active": False})
    assert crud.list_vets(db, is_active=True) == []
    kept = crud.get_appointment(db, appointment.appointment_id)
    assert kept.status == "scheduled"
    assert kept.vet_id == vet.vet_id


def test_delete_pet_cascades_to_appointments_lines_and_invoices(db, appointment, pet, vet, checkup):
    crud.create_invoice(db, {"appointment_id": appointment.appointment_id, "invoice_number": "INV-1", "total_amount": "40.00"})

    crud.delete_pet(db, pet.pet_id)

    assert crud.get_pet(db, pet.pet_id) is None
    assert crud.list_appointments(db, pet_id=pet.pet_id) == []
    assert db.query(models.AppointmentServices).count() == 0
    assert db.query(models.Invoices).count() == 0
    # restricted parents survive
    assert crud.get_vet(db, vet.vet_id) is not None
    assert crud.get_service(db, checkup.service_id) is not None


def test_delete_appointment_cascades(db, appointment):
    crud.create_invoice(db, {"appointment_id": appointment.appointment_id, "invoice_number": "INV-1"})
    crud.delete_appointment(db, appointment.appointment_id)
    assert crud.get_appointment(db, appointment.appointment_id) is None
    assert crud.list_appointment_services(db, appointment.appointment_id) == []
    assert crud.get_invoice_for_appointment(db, appointment.appointment_id) is None


def test_appointment_detail_projection(db, appointment, owner, pet, vet):
    detail = crud.get_appointment_detail(db, appointment.appointment_id)
    assert detail.pet_name == "Bella"
    assert detail.species == "Dog"
    assert detail.owner_name == "Alice Ngugi"
    assert detail.vet_name == "Dr. John Wambua"
    assert detail.status == "scheduled"
    assert detail.reason == "Annual checkup"
    assert detail.owner_id == owner.owner_id
    assert detail.appointment_datetime == datetime(2025, 9, 20, 10, 0, 0)


def test_detail_projection_reflects_latest_state(db, appointment, owner, pet):
    crud.update_owner(db, owner.owner_id, {"last_name": "Wanjiru"})
    crud.update_pet(db, pet.pet_id, {"name": "Bella II"})
    crud.cancel_appointment(db, appointment.appointment_id)

    detail = crud.get_appointment_detail(db, appointment.appointment_id)
    assert detail.owner_name == "Alice Wanjiru"
    assert detail.pet_name == "Bella II"
    assert detail.status == "cancelled"


def test_detail_list_and_missing(db, appointment, vet):
    assert crud.get_appointment_detail(db, 999) is None
    details = crud.list_appointment_details(db, vet_id=vet.vet_id, status="scheduled")
    assert [d.appointment_id for d in details] == [appointment.appointment_id]
    assert crud.list_appointment_details(db, status="completed") == []


def test_range_filters_accept_mixed_timezones(db, appointment, second_pet, vet, slot):
    later = _book(db, second_pet, vet, slot + timedelta(days=1))
    start = datetime(2025, 9, 20, 0, 0, tzinfo=timezone.utc)
    end = datetime(2025, 9, 21, 0, 0)

    found = crud.list_appointments(db, vet_id=vet.vet_id, start=start, end=end)
    assert [a.appointment_id for a in found] == [appointment.appointment_id]
    details = crud.list_appointment_details(db, start=datetime(2025, 9, 21, 3, 0, tzinfo=timezone(timedelta(hours=3))))
    assert [d.appointment_id for d in details] == [later.appointment_id]
    with pytest.raises(ValidationError):
        crud.list_appointments(db, start=end, end=start)
