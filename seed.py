"""Load the sample clinic dataset through the persistence layer.

Rows are looked up by their natural unique key first, so the script can be
re-run against a populated database without creating duplicates.
"""

import argparse
import logging
import sys
from datetime import date, datetime
from decimal import Decimal

import crud
import models
from config import configure_logging
from database import SessionLocal, engine
from exceptions import ClinicError

logger = logging.getLogger(__name__)


OWNERS = [
    dict(first_name='Alice', last_name='Ngugi', phone='+254700000001', email='alice@example.com', address='Nairobi, Kenya'),
    dict(first_name='Brian', last_name='Ouma', phone='+254700000002', email='brian@example.com', address='Nairobi, Kenya'),
]

PETS = [
    dict(owner_phone='+254700000001', name='Bella', species='Dog', breed='Labrador',
         date_of_birth=date(2019, 5, 12), gender='Female', microchip='MC-1001'),
    dict(owner_phone='+254700000002', name='Mittens', species='Cat', breed='Domestic Shorthair',
         date_of_birth=date(2021, 3, 3), gender='Female', microchip=None),
]

VETS = [
    dict(first_name='Dr. John', last_name='Wambua', license_number='LIC-2020-001', phone='+254700000010',
         email='john.w@example.com', specialization='Surgery'),
    dict(first_name='Dr. Mary', last_name='Kariuki', license_number='LIC-2019-045', phone='+254700000011',
         email='mary.k@example.com', specialization='Internal Medicine'),
]

SERVICES = [
    dict(name='General Checkup', description='Routine physical examination', price=Decimal('15.00'), duration_minutes=20),
    dict(name='Vaccination', description='Core vaccinations', price=Decimal('25.00'), duration_minutes=15),
    dict(name='Spay/Neuter', description='Neutering surgery', price=Decimal('120.00'), duration_minutes=90),
]

USERS = [
    dict(username='reception1', display_name='Front Desk', role='reception', password='reception-change-me'),
]


def get_or_create_owner(db, data: dict):
    existing = crud.list_owners(db, phone=data['phone'])
    return existing[0] if existing else crud.create_owner(db, data)


def get_or_create_pet(db, data: dict):
    data = dict(data)
    phone = data.pop('owner_phone')
    owner = get_or_create_owner(db, next(o for o in OWNERS if o['phone'] == phone))
    for pet in crud.list_pets(db, owner_id=owner.owner_id):
        if pet.name == data['name']:
            return pet
    return crud.create_pet(db, dict(data, owner_id=owner.owner_id))


def get_or_create_vet(db, data: dict):
    for vet in crud.list_vets(db):
        if vet.license_number == data['license_number']:
            return vet
    return crud.create_vet(db, data)


def get_or_create_service(db, data: dict):
    for service in crud.list_services(db):
        if service.name == data['name']:
            return service
    return crud.create_service(db, data)


def get_or_create_user(db, data: dict):
    return crud.get_user_by_username(db, data['username']) or crud.create_user(db, data)


def get_or_create_appointment(db, pet, vet, when: datetime, services, **fields):
    # the (vet, datetime) slot is the natural key of an appointment
    for appt in crud.list_appointments(db, vet_id=vet.vet_id, start=when):
        if appt.appointment_datetime == when:
            return appt
    return crud.create_appointment(db, dict(
        pet_id=pet.pet_id,
        vet_id=vet.vet_id,
        appointment_datetime=when,
        services=[{'service_id': s.service_id, 'quantity': 1} for s in services],
        **fields,
    ))


def get_or_create_invoice(db, appointment, invoice_number: str):
    invoice = crud.get_invoice_for_appointment(db, appointment.appointment_id)
    if invoice:
        return invoice
    tax = Decimal('0.00')
    return crud.create_invoice(db, dict(
        appointment_id=appointment.appointment_id,
        invoice_number=invoice_number,
        total_amount=crud.get_appointment_subtotal(db, appointment.appointment_id) + tax,
        tax_amount=tax,
        paid=False,
    ))


def preflight_check(db):
    """Report existing row counts for the key tables."""
    counts = {
        'owners': len(crud.list_owners(db)),
        'pets': len(crud.list_pets(db)),
        'vets': len(crud.list_vets(db)),
        'services': len(crud.list_services(db)),
        'appointments': len(crud.list_appointments(db)),
    }
    for k, v in counts.items():
        logger.info("Preflight %s: %s", k, v)
    return counts


def seed(db):
    """Populate the clinic with two owners, two pets, two vets, the service catalog,
    one booked appointment with two services, its invoice and a reception user."""
    for data in OWNERS:
        get_or_create_owner(db, data)
    pets = [get_or_create_pet(db, data) for data in PETS]
    vets = [get_or_create_vet(db, data) for data in VETS]
    services = {data['name']: get_or_create_service(db, data) for data in SERVICES}
    for data in USERS:
        get_or_create_user(db, data)

    appointment = get_or_create_appointment(
        db, pets[0], vets[0], datetime(2025, 9, 20, 10, 0, 0),
        [services['General Checkup'], services['Vaccination']],
        status='scheduled', reason='Annual checkup', created_by='reception1',
    )
    invoice = get_or_create_invoice(db, appointment, 'INV-20250916-0001')
    logger.info("Seeded appointment %s with invoice %s (%s)",
                appointment.appointment_id, invoice.invoice_number, invoice.total_amount)
    return appointment


def main(argv=None):
    parser = argparse.ArgumentParser(description='Load the sample clinic dataset')
    parser.add_argument('--reset', action='store_true', help='Drop and recreate all tables first')
    args = parser.parse_args(argv)

    configure_logging()
    if args.reset:
        logger.warning("Dropping all tables")
        models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        preflight_check(db)
        seed(db)
    except ClinicError as e:
        logger.error("Error while seeding: %s", e)
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
