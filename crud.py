"""Persistence and integrity layer for the clinic booking schema.

Every write runs as a single transaction on the caller's session. Foreign keys
and unique values are checked up front so callers get a precise error
(entity, field, value); the database constraints back those checks when
concurrent writers race, and their IntegrityErrors are translated into the
same error kinds.

Reads never write and return ``None`` or an empty list when nothing matches.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import schemas
from database import utcnow
from exceptions import ClinicError, ConflictError, DependencyError, NotFoundError, ReferenceError, ValidationError
from security import get_password_hash

logger = logging.getLogger(__name__)

Payload = Union[Mapping[str, Any], BaseModel]

UNIQUE_FIELDS = {
    models.Owners: ("phone", "email"),
    models.Pets: ("microchip",),
    models.Vets: ("license_number", "email"),
    models.Services: ("name",),
    models.Invoices: ("invoice_number", "appointment_id"),
    models.Users: ("username", "email"),
}

REFERENCES = {
    models.Pets: {"owner_id": models.Owners},
    models.Appointments: {"pet_id": models.Pets, "vet_id": models.Vets},
    models.Invoices: {"appointment_id": models.Appointments},
}


# ---------------- helpers ----------------


def _parse(schema_cls, payload: Payload, entity: str):
    if isinstance(payload, schema_cls):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return schema_cls.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(entity, exc) from exc


def _changes(schema_cls, payload: Payload, entity: str) -> Dict[str, Any]:
    return _parse(schema_cls, payload, entity).model_dump(exclude_unset=True)


@contextmanager
def _transaction(db: Session, entity: str, on_foreign_key=ReferenceError):
    """Commit on success, roll back every partial effect on failure."""
    try:
        yield
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity error on %s: %s", entity, exc.orig)
        reason = str(exc.orig).lower()
        if "foreign key" in reason:
            raise on_foreign_key(f"{entity}: a foreign key constraint failed", entity=entity) from exc
        if "unique" in reason or "duplicate key" in reason:
            raise ConflictError(f"{entity}: value violates a unique constraint", entity=entity) from exc
        # CHECK and NOT NULL failures
        raise ValidationError(f"{entity}: {exc.orig}", entity=entity) from exc
    except ClinicError as exc:
        db.rollback()
        logger.warning("Rejected write on %s: %s", entity, exc)
        raise
    except Exception:
        db.rollback()
        raise


def _get_or_404(db: Session, model, row_id, lock: bool = False):
    row = db.get(model, row_id, with_for_update=True if lock else None)
    if row is None:
        raise NotFoundError(f"{model.__tablename__} {row_id} not found", entity=model.__tablename__, value=row_id)
    return row


def _check_unique(db: Session, model, values: Mapping[str, Any], exclude_id=None) -> None:
    entity = model.__tablename__
    pk = model.__mapper__.primary_key[0]
    for field in UNIQUE_FIELDS.get(model, ()):
        value = values.get(field)
        if value is None:
            continue
        stmt = select(pk).where(getattr(model, field) == value)
        if exclude_id is not None:
            stmt = stmt.where(pk != exclude_id)
        if db.scalars(stmt.limit(1)).first() is not None:
            raise ConflictError(f"{entity}.{field} '{value}' already exists", entity=entity, field=field, value=value)


def _check_references(db: Session, model, values: Mapping[str, Any]) -> None:
    entity = model.__tablename__
    for field, target in REFERENCES.get(model, {}).items():
        if field in values and db.get(target, values[field]) is None:
            raise ReferenceError(
                f"{entity}.{field}: {target.__tablename__} {values[field]} does not exist",
                entity=entity, field=field, value=values[field],
            )


def _revalidate(row, base_schema, changes: Mapping[str, Any], entity: str) -> Dict[str, Any]:
    """Validate the row as it would look after ``changes``; return the changed values."""
    current = {c.key: getattr(row, c.key) for c in row.__table__.columns if c.key in base_schema.model_fields}
    merged = _parse(base_schema, {**current, **changes}, entity)
    return {field: getattr(merged, field) for field in changes}


def _create(db: Session, model, values: Dict[str, Any]):
    entity = model.__tablename__
    with _transaction(db, entity):
        _check_references(db, model, values)
        _check_unique(db, model, values)
        row = model(**values)
        db.add(row)
    db.refresh(row)
    logger.info("Created %s %s", entity, inspect(row).identity)
    return row


def _update(db: Session, model, base_schema, row_id, changes: Dict[str, Any], **extra):
    entity = model.__tablename__
    with _transaction(db, entity):
        row = _get_or_404(db, model, row_id, lock=True)
        values = _revalidate(row, base_schema, changes, entity)
        _check_references(db, model, values)
        _check_unique(db, model, values, exclude_id=row_id)
        values.update(extra)
        for field, value in values.items():
            setattr(row, field, value)
    db.refresh(row)
    logger.info("Updated %s %s: %s", entity, row_id, sorted(values))
    return row


def _delete(db: Session, model, row_id, restrict=()) -> None:
    """Delete a row; ``restrict`` lists (child model, fk column) pairs that block it."""
    entity = model.__tablename__
    with _transaction(db, entity, on_foreign_key=DependencyError):
        row = _get_or_404(db, model, row_id, lock=True)
        for child, column in restrict:
            count = db.scalar(select(func.count()).select_from(child).where(column == row_id))
            if count:
                raise DependencyError(
                    f"{entity} {row_id} still has {count} {child.__tablename__} and cannot be deleted",
                    entity=entity, field=child.__tablename__, value=count,
                )
        db.delete(row)
    logger.info("Deleted %s %s", entity, row_id)


def _list(db: Session, model, order_by, **filters) -> List[Any]:
    stmt = select(model)
    for field, value in filters.items():
        if value is not None:
            stmt = stmt.where(getattr(model, field) == value)
    return list(db.scalars(stmt.order_by(order_by)).all())


# ---------------- Owners ----------------


def create_owner(db: Session, payload: Payload) -> models.Owners:
    return _create(db, models.Owners, _parse(schemas.OwnerCreate, payload, "owners").model_dump())


def get_owner(db: Session, owner_id: int) -> Optional[models.Owners]:
    return db.get(models.Owners, owner_id)


def list_owners(db: Session, phone: Optional[str] = None, email: Optional[str] = None) -> List[models.Owners]:
    return _list(db, models.Owners, models.Owners.owner_id, phone=phone, email=email)


def update_owner(db: Session, owner_id: int, payload: Payload) -> models.Owners:
    return _update(db, models.Owners, schemas.OwnerBase, owner_id, _changes(schemas.OwnerUpdate, payload, "owners"))


def delete_owner(db: Session, owner_id: int) -> None:
    _delete(db, models.Owners, owner_id, restrict=[(models.Pets, models.Pets.owner_id)])


# ---------------- Pets ----------------


def create_pet(db: Session, payload: Payload) -> models.Pets:
    return _create(db, models.Pets, _parse(schemas.PetCreate, payload, "pets").model_dump())


def get_pet(db: Session, pet_id: int) -> Optional[models.Pets]:
    return db.get(models.Pets, pet_id)


def list_pets(db: Session, owner_id: Optional[int] = None, species: Optional[str] = None) -> List[models.Pets]:
    return _list(db, models.Pets, models.Pets.pet_id, owner_id=owner_id, species=species)


def update_pet(db: Session, pet_id: int, payload: Payload) -> models.Pets:
    return _update(db, models.Pets, schemas.PetBase, pet_id, _changes(schemas.PetUpdate, payload, "pets"))


def delete_pet(db: Session, pet_id: int) -> None:
    # appointments, their service lines and invoices go with the pet
    _delete(db, models.Pets, pet_id)


# ---------------- Vets ----------------


def create_vet(db: Session, payload: Payload) -> models.Vets:
    return _create(db, models.Vets, _parse(schemas.VetCreate, payload, "vets").model_dump())


def get_vet(db: Session, vet_id: int) -> Optional[models.Vets]:
    return db.get(models.Vets, vet_id)


def list_vets(db: Session, is_active: Optional[bool] = None) -> List[models.Vets]:
    return _list(db, models.Vets, models.Vets.vet_id, is_active=is_active)


def update_vet(db: Session, vet_id: int, payload: Payload) -> models.Vets:
    # deactivating a vet leaves existing bookings untouched
    return _update(db, models.Vets, schemas.VetBase, vet_id, _changes(schemas.VetUpdate, payload, "vets"))


def delete_vet(db: Session, vet_id: int) -> None:
    _delete(db, models.Vets, vet_id, restrict=[(models.Appointments, models.Appointments.vet_id)])


# ---------------- Services ----------------


def create_service(db: Session, payload: Payload) -> models.Services:
    return _create(db, models.Services, _parse(schemas.ServiceCreate, payload, "services").model_dump())


def get_service(db: Session, service_id: int) -> Optional[models.Services]:
    return db.get(models.Services, service_id)


def list_services(db: Session) -> List[models.Services]:
    return _list(db, models.Services, models.Services.name)


def update_service(db: Session, service_id: int, payload: Payload) -> models.Services:
    # catalog price changes never touch stored price_at_time snapshots
    return _update(db, models.Services, schemas.ServiceBase, service_id, _changes(schemas.ServiceUpdate, payload, "services"))


def delete_service(db: Session, service_id: int) -> None:
    _delete(db, models.Services, service_id,
            restrict=[(models.AppointmentServices, models.AppointmentServices.service_id)])


# ---------------- Appointments ----------------


def _check_vet_slot(db: Session, vet_id: int, when: datetime, exclude_id: Optional[int] = None) -> None:
    """Refuse a second booking for the same vet at the same second.

    The vet row is locked first so concurrent bookings for one vet queue up;
    the uq_vet_datetime index settles it on stores without row locks.
    """
    db.get(models.Vets, vet_id, with_for_update=True)
    stmt = select(models.Appointments.appointment_id).where(
        models.Appointments.vet_id == vet_id,
        models.Appointments.appointment_datetime == when,
    )
    if exclude_id is not None:
        stmt = stmt.where(models.Appointments.appointment_id != exclude_id)
    if db.scalars(stmt.limit(1)).first() is not None:
        raise ConflictError(
            f"Vet {vet_id} is already booked at {when.isoformat()}",
            entity="appointments", field="appointment_datetime", value=when,
        )


def _attach_service(db: Session, appointment: models.Appointments,
                    item: schemas.AppointmentServiceItem) -> models.AppointmentServices:
    service = db.get(models.Services, item.service_id)
    if service is None:
        raise ReferenceError(
            f"appointment_services.service_id: services {item.service_id} does not exist",
            entity="appointment_services", field="service_id", value=item.service_id,
        )
    price = item.price_at_time if item.price_at_time is not None else service.price
    line = models.AppointmentServices(service_id=service.service_id, quantity=item.quantity, price_at_time=price)
    appointment.services.append(line)
    return line


def create_appointment(db: Session, payload: Payload) -> models.Appointments:
    """Book a pet with a vet, optionally attaching services in the same transaction."""
    data = _parse(schemas.AppointmentCreate, payload, "appointments")
    values = data.model_dump(exclude={"services"})
    with _transaction(db, "appointments"):
        _check_references(db, models.Appointments, values)
        _check_vet_slot(db, values["vet_id"], values["appointment_datetime"])
        appointment = models.Appointments(**values)
        db.add(appointment)
        for item in data.services:
            _attach_service(db, appointment, item)
    db.refresh(appointment)
    logger.info("Booked appointment %s: vet %s at %s",
                appointment.appointment_id, appointment.vet_id, appointment.appointment_datetime)
    return appointment


def get_appointment(db: Session, appointment_id: int) -> Optional[models.Appointments]:
    return db.get(models.Appointments, appointment_id)


def _filter_appointments(stmt, pet_id=None, vet_id=None, status=None, start=None, end=None):
    if status is not None and status not in models.APPOINTMENT_STATUSES:
        raise ValidationError(f"Unknown appointment status '{status}'", entity="appointments", field="status", value=status)
    if start is not None:
        start = schemas.to_stored_datetime(start)
    if end is not None:
        end = schemas.to_stored_datetime(end)
    if start is not None and end is not None and start > end:
        raise ValidationError("start must not be after end", entity="appointments", field="start", value=start)
    appointment = models.Appointments
    if pet_id is not None:
        stmt = stmt.where(appointment.pet_id == pet_id)
    if vet_id is not None:
        stmt = stmt.where(appointment.vet_id == vet_id)
    if status is not None:
        stmt = stmt.where(appointment.status == status)
    if start is not None:
        stmt = stmt.where(appointment.appointment_datetime >= start)
    if end is not None:
        stmt = stmt.where(appointment.appointment_datetime < end)
    return stmt.order_by(appointment.appointment_datetime, appointment.appointment_id)


def list_appointments(db: Session, pet_id: Optional[int] = None, vet_id: Optional[int] = None,
                      status: Optional[str] = None, start: Optional[datetime] = None,
                      end: Optional[datetime] = None) -> List[models.Appointments]:
    """Appointments matching every given filter; ``start`` inclusive, ``end`` exclusive."""
    stmt = _filter_appointments(select(models.Appointments), pet_id, vet_id, status, start, end)
    return list(db.scalars(stmt).all())


def update_appointment(db: Session, appointment_id: int, payload: Payload) -> models.Appointments:
    changes = _changes(schemas.AppointmentUpdate, payload, "appointments")
    with _transaction(db, "appointments"):
        appointment = _get_or_404(db, models.Appointments, appointment_id, lock=True)
        values = _revalidate(appointment, schemas.AppointmentBase, changes, "appointments")
        _check_references(db, models.Appointments, values)
        if "vet_id" in values or "appointment_datetime" in values:
            _check_vet_slot(
                db,
                values.get("vet_id", appointment.vet_id),
                values.get("appointment_datetime", appointment.appointment_datetime),
                exclude_id=appointment_id,
            )
        for field, value in values.items():
            setattr(appointment, field, value)
        appointment.updated_at = utcnow()
    db.refresh(appointment)
    logger.info("Updated appointments %s: %s", appointment_id, sorted(values))
    return appointment


def _transition(db: Session, appointment_id: int, status: str, not_from) -> models.Appointments:
    with _transaction(db, "appointments"):
        appointment = _get_or_404(db, models.Appointments, appointment_id, lock=True)
        if appointment.status in not_from:
            raise ValidationError(
                f"Appointment {appointment_id} is {appointment.status} and cannot become {status}",
                entity="appointments", field="status", value=appointment.status,
            )
        appointment.status = status
        appointment.updated_at = utcnow()
    db.refresh(appointment)
    logger.info("Appointment %s -> %s", appointment_id, status)
    return appointment


def complete_appointment(db: Session, appointment_id: int) -> models.Appointments:
    return _transition(db, appointment_id, "completed", not_from=("completed",))


def cancel_appointment(db: Session, appointment_id: int) -> models.Appointments:
    return _transition(db, appointment_id, "cancelled", not_from=("cancelled", "completed"))


def delete_appointment(db: Session, appointment_id: int) -> None:
    # service lines and the invoice cascade
    _delete(db, models.Appointments, appointment_id)


# ---------------- Appointment services ----------------


def add_appointment_service(db: Session, appointment_id: int, payload: Payload) -> models.AppointmentServices:
    item = _parse(schemas.AppointmentServiceItem, payload, "appointment_services")
    with _transaction(db, "appointment_services"):
        appointment = db.get(models.Appointments, appointment_id, with_for_update=True)
        if appointment is None:
            raise ReferenceError(
                f"appointment_services.appointment_id: appointments {appointment_id} does not exist",
                entity="appointment_services", field="appointment_id", value=appointment_id,
            )
        if db.get(models.AppointmentServices, (appointment_id, item.service_id)) is not None:
            raise ConflictError(
                f"Service {item.service_id} is already attached to appointment {appointment_id}",
                entity="appointment_services", field="service_id", value=item.service_id,
            )
        line = _attach_service(db, appointment, item)
        appointment.updated_at = utcnow()
    db.refresh(line)
    logger.info("Attached service %s to appointment %s at %s", line.service_id, appointment_id, line.price_at_time)
    return line


def get_appointment_service(db: Session, appointment_id: int, service_id: int) -> Optional[models.AppointmentServices]:
    return db.get(models.AppointmentServices, (appointment_id, service_id))


def list_appointment_services(db: Session, appointment_id: int) -> List[models.AppointmentServices]:
    return _list(db, models.AppointmentServices, models.AppointmentServices.service_id, appointment_id=appointment_id)


def update_appointment_service(db: Session, appointment_id: int, service_id: int,
                               payload: Payload) -> models.AppointmentServices:
    """Only the quantity of a service line can change; its price snapshot is fixed."""
    changes = _changes(schemas.AppointmentServiceUpdate, payload, "appointment_services")
    with _transaction(db, "appointment_services"):
        line = _get_or_404(db, models.AppointmentServices, (appointment_id, service_id), lock=True)
        line.quantity = changes["quantity"]
        line.appointment.updated_at = utcnow()
    db.refresh(line)
    return line


def remove_appointment_service(db: Session, appointment_id: int, service_id: int) -> None:
    with _transaction(db, "appointment_services"):
        line = _get_or_404(db, models.AppointmentServices, (appointment_id, service_id), lock=True)
        line.appointment.updated_at = utcnow()
        db.delete(line)
    logger.info("Removed service %s from appointment %s", service_id, appointment_id)


def get_appointment_subtotal(db: Session, appointment_id: int) -> Decimal:
    """Sum of quantity * price_at_time over the appointment's service lines."""
    total = sum(
        (line.quantity * Decimal(line.price_at_time) for line in list_appointment_services(db, appointment_id)),
        Decimal('0.00'),
    )
    return total.quantize(Decimal('0.01'))


# ---------------- Appointment details ----------------


def _details_query():
    appointment, pet, owner, vet = models.Appointments, models.Pets, models.Owners, models.Vets
    return (
        select(
            appointment.appointment_id,
            appointment.appointment_datetime,
            appointment.status,
            appointment.reason,
            pet.pet_id,
            pet.name.label("pet_name"),
            pet.species,
            owner.owner_id,
            owner.first_name.label("owner_first_name"),
            owner.last_name.label("owner_last_name"),
            vet.vet_id,
            vet.first_name.label("vet_first_name"),
            vet.last_name.label("vet_last_name"),
        )
        .select_from(appointment)
        .join(pet, appointment.pet_id == pet.pet_id)
        .join(owner, pet.owner_id == owner.owner_id)
        .join(vet, appointment.vet_id == vet.vet_id)
    )


def _to_detail(row) -> schemas.AppointmentDetail:
    return schemas.AppointmentDetail(
        appointment_id=row.appointment_id,
        appointment_datetime=row.appointment_datetime,
        status=row.status,
        pet_id=row.pet_id,
        pet_name=row.pet_name,
        species=row.species,
        owner_id=row.owner_id,
        owner_name=f"{row.owner_first_name} {row.owner_last_name}",
        vet_id=row.vet_id,
        vet_name=f"{row.vet_first_name} {row.vet_last_name}",
        reason=row.reason,
    )


def get_appointment_detail(db: Session, appointment_id: int) -> Optional[schemas.AppointmentDetail]:
    row = db.execute(_details_query().where(models.Appointments.appointment_id == appointment_id)).first()
    return _to_detail(row) if row else None


def list_appointment_details(db: Session, pet_id: Optional[int] = None, vet_id: Optional[int] = None,
                             status: Optional[str] = None, start: Optional[datetime] = None,
                             end: Optional[datetime] = None) -> List[schemas.AppointmentDetail]:
    stmt = _filter_appointments(_details_query(), pet_id, vet_id, status, start, end)
    return [_to_detail(row) for row in db.execute(stmt).all()]


# ---------------- Invoices ----------------


def create_invoice(db: Session, payload: Payload) -> models.Invoices:
    """Issue the invoice of an appointment; totals are supplied by the caller."""
    return _create(db, models.Invoices, _parse(schemas.InvoiceCreate, payload, "invoices").model_dump())


def get_invoice(db: Session, invoice_id: int) -> Optional[models.Invoices]:
    return db.get(models.Invoices, invoice_id)


def get_invoice_for_appointment(db: Session, appointment_id: int) -> Optional[models.Invoices]:
    return db.scalars(select(models.Invoices).where(models.Invoices.appointment_id == appointment_id)).first()


def list_invoices(db: Session, paid: Optional[bool] = None) -> List[models.Invoices]:
    return _list(db, models.Invoices, models.Invoices.issued_at, paid=paid)


def update_invoice(db: Session, invoice_id: int, payload: Payload) -> models.Invoices:
    return _update(db, models.Invoices, schemas.InvoiceBase, invoice_id, _changes(schemas.InvoiceUpdate, payload, "invoices"))


def mark_invoice_paid(db: Session, invoice_id: int, paid_at: Optional[datetime] = None) -> models.Invoices:
    with _transaction(db, "invoices"):
        invoice = _get_or_404(db, models.Invoices, invoice_id, lock=True)
        if invoice.paid:
            raise ValidationError(f"Invoice {invoice.invoice_number} is already paid",
                                  entity="invoices", field="paid", value=True)
        invoice.paid = True
        invoice.paid_at = schemas.to_stored_datetime(paid_at) if paid_at is not None else utcnow()
    db.refresh(invoice)
    logger.info("Invoice %s paid", invoice_id)
    return invoice


def delete_invoice(db: Session, invoice_id: int) -> None:
    _delete(db, models.Invoices, invoice_id)


# ---------------- Users ----------------


def create_user(db: Session, payload: Payload) -> models.Users:
    data = _parse(schemas.UserCreate, payload, "users")
    values = data.model_dump(exclude={"password", "password_hash"})
    if data.password is not None:
        values["password_hash"] = get_password_hash(data.password.get_secret_value())
    else:
        values["password_hash"] = data.password_hash
    return _create(db, models.Users, values)


def get_user(db: Session, user_id: int) -> Optional[models.Users]:
    return db.get(models.Users, user_id)


def get_user_by_username(db: Session, username: str) -> Optional[models.Users]:
    return db.scalars(select(models.Users).where(models.Users.username == username)).first()


def list_users(db: Session, role: Optional[str] = None, is_active: Optional[bool] = None) -> List[models.Users]:
    return _list(db, models.Users, models.Users.user_id, role=role, is_active=is_active)


def update_user(db: Session, user_id: int, payload: Payload) -> models.Users:
    changes = _changes(schemas.UserUpdate, payload, "users")
    password = changes.pop("password", None)
    extra = {"password_hash": get_password_hash(password.get_secret_value())} if password is not None else {}
    return _update(db, models.Users, schemas.UserBase, user_id, changes, **extra)


def delete_user(db: Session, user_id: int) -> None:
    _delete(db, models.Users, user_id)
