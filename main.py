import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import crud
import models
from config import configure_logging, get_settings
from database import engine, get_db
from exceptions import ClinicError
from schemas import (
    OwnerCreate,
    OwnerUpdate,
    OwnerRead,
    OwnerWithPets,
    PetCreate,
    PetUpdate,
    PetRead,
    PetWithAppointments,
    VetCreate,
    VetUpdate,
    VetRead,
    ServiceCreate,
    ServiceUpdate,
    ServiceRead,
    AppointmentCreate,
    AppointmentUpdate,
    AppointmentRead,
    AppointmentDetail,
    AppointmentServiceItem,
    AppointmentServiceUpdate,
    AppointmentServiceRead,
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceRead,
    UserCreate,
    UserUpdate,
    UserRead,
)

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=get_settings().app_name, version="1.0.0")
models.Base.metadata.create_all(bind=engine)


@app.exception_handler(ClinicError)
async def clinic_error_handler(request: Request, exc: ClinicError) -> JSONResponse:
    logger.info("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _found(row, what: str):
    if row is None:
        raise HTTPException(404, f"{what} not found")
    return row


# -- Owners
@app.get("/owners", response_model=List[OwnerRead])
def list_owners(phone: Optional[str] = None, email: Optional[str] = None, db: Session = Depends(get_db)):
    return crud.list_owners(db, phone=phone, email=email)


@app.get("/owners/{owner_id}", response_model=OwnerWithPets)
def get_owner(owner_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_owner(db, owner_id), "Owner")


@app.get("/owners/{owner_id}/pets", response_model=List[PetRead])
def get_owner_pets(owner_id: int, db: Session = Depends(get_db)):
    _found(crud.get_owner(db, owner_id), "Owner")
    return crud.list_pets(db, owner_id=owner_id)


@app.post("/owners", response_model=OwnerRead, status_code=201)
def create_owner(payload: OwnerCreate, db: Session = Depends(get_db)):
    return crud.create_owner(db, payload)


@app.put("/owners/{owner_id}", response_model=OwnerRead)
def update_owner(owner_id: int, payload: OwnerUpdate, db: Session = Depends(get_db)):
    return crud.update_owner(db, owner_id, payload)


@app.delete("/owners/{owner_id}")
def delete_owner(owner_id: int, db: Session = Depends(get_db)):
    crud.delete_owner(db, owner_id)
    return {"detail": "Owner deleted"}


# -- Pets
@app.get("/pets", response_model=List[PetRead])
def list_pets(owner_id: Optional[int] = None, species: Optional[str] = None, db: Session = Depends(get_db)):
    return crud.list_pets(db, owner_id=owner_id, species=species)


@app.get("/pets/{pet_id}", response_model=PetWithAppointments)
def get_pet(pet_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_pet(db, pet_id), "Pet")


@app.post("/pets", response_model=PetRead, status_code=201)
def create_pet(payload: PetCreate, db: Session = Depends(get_db)):
    return crud.create_pet(db, payload)


@app.put("/pets/{pet_id}", response_model=PetRead)
def update_pet(pet_id: int, payload: PetUpdate, db: Session = Depends(get_db)):
    return crud.update_pet(db, pet_id, payload)


@app.delete("/pets/{pet_id}")
def delete_pet(pet_id: int, db: Session = Depends(get_db)):
    crud.delete_pet(db, pet_id)
    return {"detail": "Pet deleted"}


# -- Vets
@app.get("/vets", response_model=List[VetRead])
def list_vets(is_active: Optional[bool] = None, db: Session = Depends(get_db)):
    return crud.list_vets(db, is_active=is_active)


@app.get("/vets/{vet_id}", response_model=VetRead)
def get_vet(vet_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_vet(db, vet_id), "Vet")


@app.get("/vets/{vet_id}/schedule", response_model=List[AppointmentRead])
def get_vet_schedule(vet_id: int, day: Optional[date] = None, db: Session = Depends(get_db)):
    _found(crud.get_vet(db, vet_id), "Vet")
    if day is None:
        return crud.list_appointments(db, vet_id=vet_id)
    start = datetime.combine(day, time.min)
    return crud.list_appointments(db, vet_id=vet_id, start=start, end=start + timedelta(days=1))


@app.post("/vets", response_model=VetRead, status_code=201)
def create_vet(payload: VetCreate, db: Session = Depends(get_db)):
    return crud.create_vet(db, payload)


@app.put("/vets/{vet_id}", response_model=VetRead)
def update_vet(vet_id: int, payload: VetUpdate, db: Session = Depends(get_db)):
    return crud.update_vet(db, vet_id, payload)


@app.delete("/vets/{vet_id}")
def delete_vet(vet_id: int, db: Session = Depends(get_db)):
    crud.delete_vet(db, vet_id)
    return {"detail": "Vet deleted"}


# -- Services
@app.get("/services", response_model=List[ServiceRead])
def list_services(db: Session = Depends(get_db)):
    return crud.list_services(db)


@app.get("/services/{service_id}", response_model=ServiceRead)
def get_service(service_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_service(db, service_id), "Service")


@app.post("/services", response_model=ServiceRead, status_code=201)
def create_service(payload: ServiceCreate, db: Session = Depends(get_db)):
    return crud.create_service(db, payload)


@app.put("/services/{service_id}", response_model=ServiceRead)
def update_service(service_id: int, payload: ServiceUpdate, db: Session = Depends(get_db)):
    return crud.update_service(db, service_id, payload)


@app.delete("/services/{service_id}")
def delete_service(service_id: int, db: Session = Depends(get_db)):
    crud.delete_service(db, service_id)
    return {"detail": "Service deleted"}


# -- Appointments
@app.get("/appointments", response_model=List[AppointmentRead])
def list_appointments(
    pet_id: Optional[int] = None,
    vet_id: Optional[int] = None,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return crud.list_appointments(db, pet_id=pet_id, vet_id=vet_id, status=status, start=start, end=end)


@app.get("/appointment-details", response_model=List[AppointmentDetail])
def list_appointment_details(
    pet_id: Optional[int] = None,
    vet_id: Optional[int] = None,
    status: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    db: Session = Depends(get_db),
):
    return crud.list_appointment_details(db, pet_id=pet_id, vet_id=vet_id, status=status, start=start, end=end)


@app.get("/appointments/{appointment_id}", response_model=AppointmentRead)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_appointment(db, appointment_id), "Appointment")


@app.get("/appointments/{appointment_id}/details", response_model=AppointmentDetail)
def get_appointment_detail(appointment_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_appointment_detail(db, appointment_id), "Appointment")


@app.post("/appointments", response_model=AppointmentRead, status_code=201)
def create_appointment(payload: AppointmentCreate, db: Session = Depends(get_db)):
    return crud.create_appointment(db, payload)


@app.put("/appointments/{appointment_id}", response_model=AppointmentRead)
def update_appointment(appointment_id: int, payload: AppointmentUpdate, db: Session = Depends(get_db)):
    return crud.update_appointment(db, appointment_id, payload)


@app.put("/appointments/{appointment_id}/complete", response_model=AppointmentRead)
def complete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return crud.complete_appointment(db, appointment_id)


@app.put("/appointments/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return crud.cancel_appointment(db, appointment_id)


@app.delete("/appointments/{appointment_id}")
def delete_appointment(appointment_id: int, db: Session = Depends(get_db)):
    crud.delete_appointment(db, appointment_id)
    return {"detail": "Appointment deleted"}


# -- Appointment services
@app.get("/appointments/{appointment_id}/services", response_model=List[AppointmentServiceRead])
def list_appointment_services(appointment_id: int, db: Session = Depends(get_db)):
    _found(crud.get_appointment(db, appointment_id), "Appointment")
    return crud.list_appointment_services(db, appointment_id)


@app.post("/appointments/{appointment_id}/services", response_model=AppointmentServiceRead, status_code=201)
def add_appointment_service(appointment_id: int, payload: AppointmentServiceItem, db: Session = Depends(get_db)):
    return crud.add_appointment_service(db, appointment_id, payload)


@app.put("/appointments/{appointment_id}/services/{service_id}", response_model=AppointmentServiceRead)
def update_appointment_service(appointment_id: int, service_id: int, payload: AppointmentServiceUpdate,
                               db: Session = Depends(get_db)):
    return crud.update_appointment_service(db, appointment_id, service_id, payload)


@app.delete("/appointments/{appointment_id}/services/{service_id}")
def remove_appointment_service(appointment_id: int, service_id: int, db: Session = Depends(get_db)):
    crud.remove_appointment_service(db, appointment_id, service_id)
    return {"detail": "Service removed from appointment"}


# -- Invoices
@app.get("/invoices", response_model=List[InvoiceRead])
def list_invoices(paid: Optional[bool] = None, db: Session = Depends(get_db)):
    return crud.list_invoices(db, paid=paid)


@app.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_invoice(db, invoice_id), "Invoice")


@app.post("/invoices", response_model=InvoiceRead, status_code=201)
def create_invoice(payload: InvoiceCreate, db: Session = Depends(get_db)):
    return crud.create_invoice(db, payload)


@app.put("/invoices/{invoice_id}", response_model=InvoiceRead)
def update_invoice(invoice_id: int, payload: InvoiceUpdate, db: Session = Depends(get_db)):
    return crud.update_invoice(db, invoice_id, payload)


@app.put("/invoices/{invoice_id}/pay", response_model=InvoiceRead)
def pay_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return crud.mark_invoice_paid(db, invoice_id)


@app.delete("/invoices/{invoice_id}")
def delete_invoice(invoice_id: int, db: Session = Depends(get_db)):
    crud.delete_invoice(db, invoice_id)
    return {"detail": "Invoice deleted"}


# -- Users
@app.get("/users", response_model=List[UserRead])
def list_users(role: Optional[str] = None, is_active: Optional[bool] = None, db: Session = Depends(get_db)):
    return crud.list_users(db, role=role, is_active=is_active)


@app.get("/users/{user_id}", response_model=UserRead)
def get_user(user_id: int, db: Session = Depends(get_db)):
    return _found(crud.get_user(db, user_id), "User")


@app.post("/users", response_model=UserRead, status_code=201)
def create_user(payload: UserCreate, db: Session = Depends(get_db)):
    return crud.create_user(db, payload)


@app.put("/users/{user_id}", response_model=UserRead)
def update_user(user_id: int, payload: UserUpdate, db: Session = Depends(get_db)):
    return crud.update_user(db, user_id, payload)


@app.delete("/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db)):
    crud.delete_user(db, user_id)
    return {"detail": "User deleted"}
