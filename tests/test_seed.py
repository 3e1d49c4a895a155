"""The sample dataset loads cleanly and can be re-run."""

from decimal import Decimal

import crud
import models
import seed


def _counts(db):
    return {
        model.__tablename__: db.query(model).count()
        for model in (models.Owners, models.Pets, models.Vets, models.Services,
                      models.Appointments, models.AppointmentServices, models.Invoices, models.Users)
    }


def test_seed_populates_clinic(db):
    appointment = seed.seed(db)

    assert _counts(db) == {
        "owners": 2, "pets": 2, "vets": 2, "services": 3,
        "appointments": 1, "appointment_services": 2, "invoices": 1, "users": 1,
    }
    invoice = crud.get_invoice_for_appointment(db, appointment.appointment_id)
    assert invoice.invoice_number == "INV-20250916-0001"
    assert invoice.total_amount == Decimal("40.00")

    detail = crud.get_appointment_detail(db, appointment.appointment_id)
    assert detail.pet_name == "Bella"
    assert detail.owner_name == "Alice Ngugi"
    assert detail.vet_name == "Dr. John Wambua"


def test_seed_is_idempotent(db):
    first = seed.seed(db)
    before = _counts(db)
    second = seed.seed(db)
    assert second.appointment_id == first.appointment_id
    assert _counts(db) == before


def test_preflight_reports_counts(db):
    assert seed.preflight_check(db)["owners"] == 0
    seed.seed(db)
    assert seed.preflight_check(db) == {"owners": 2, "pets": 2, "vets": 2, "services": 3, "appointments": 1}
