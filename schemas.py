from pydantic import BaseModel, Field, ConfigDict, SecretStr, ValidationInfo, field_validator, model_validator
from typing import Annotated, Optional, List, Literal
from datetime import date, datetime, timezone
from decimal import Decimal

from database import utcnow


Gender = Literal['Male', 'Female', 'Unknown']
AppointmentStatus = Literal['scheduled', 'completed', 'cancelled', 'no-show']
UserRole = Literal['admin', 'reception', 'vet', 'accountant']

Money = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]


def to_stored_datetime(value: datetime) -> datetime:
    """Appointments are stored as naive UTC with second precision."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


class StrictModel(BaseModel):
    model_config = ConfigDict(extra='forbid')

    @field_validator('*', mode='before')
    @classmethod
    def no_surrounding_whitespace(cls, v, info: ValidationInfo):
        # passwords are taken as typed
        if isinstance(v, str) and info.field_name != 'password' and v != v.strip():
            raise ValueError('must not start or end with whitespace')
        return v


# ---------------- Owners ----------------


class OwnerBase(StrictModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=1, max_length=30)
    email: Optional[str] = Field(None, max_length=150, pattern=r'^[^@\s]+@[^@\s]+$')
    address: Optional[str] = Field(None, max_length=255)


class OwnerCreate(OwnerBase):
    pass


class OwnerUpdate(StrictModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None


class OwnerRead(OwnerBase):
    owner_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------- Pets ----------------


class PetBase(StrictModel):
    owner_id: int
    name: str = Field(..., min_length=1, max_length=120)
    species: str = Field(..., min_length=1, max_length=50)
    breed: Optional[str] = Field(None, max_length=100)
    date_of_birth: Optional[date] = None
    gender: Gender = 'Unknown'
    microchip: Optional[str] = Field(None, min_length=1, max_length=64)


class PetCreate(PetBase):
    pass


class PetUpdate(StrictModel):
    owner_id: Optional[int] = None
    name: Optional[str] = None
    species: Optional[str] = None
    breed: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    microchip: Optional[str] = None


class PetRead(PetBase):
    pet_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------- Vets ----------------


class VetBase(StrictModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    license_number: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    email: Optional[str] = Field(None, max_length=150, pattern=r'^[^@\s]+@[^@\s]+$')
    specialization: Optional[str] = Field(None, max_length=150)
    is_active: bool = True


class VetCreate(VetBase):
    pass


class VetUpdate(StrictModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    license_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    specialization: Optional[str] = None
    is_active: Optional[bool] = None


class VetRead(VetBase):
    vet_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------- Services ----------------


class ServiceBase(StrictModel):
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    price: Money = Decimal('0.00')
    duration_minutes: int = Field(30, ge=0)


class ServiceCreate(ServiceBase):
    pass


class ServiceUpdate(StrictModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    duration_minutes: Optional[int] = None


class ServiceRead(ServiceBase):
    service_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------- Appointment services (join rows) ----------------


class AppointmentServiceItem(StrictModel):
    """A service attached to an appointment.

    ``price_at_time`` defaults to the catalog price at the moment the row is
    created; once stored it never changes.
    """
    service_id: int
    quantity: int = Field(1, ge=1)
    price_at_time: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)


class AppointmentServiceUpdate(StrictModel):
    quantity: int = Field(..., ge=1)


class AppointmentServiceRead(BaseModel):
    appointment_id: int
    service_id: int
    quantity: int
    price_at_time: Decimal

    model_config = ConfigDict(from_attributes=True)


# ---------------- Appointments ----------------


class AppointmentBase(StrictModel):
    pet_id: int
    vet_id: int
    appointment_datetime: datetime
    status: AppointmentStatus = 'scheduled'
    reason: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    created_by: Optional[str] = Field(None, max_length=100)

    @field_validator('appointment_datetime')
    @classmethod
    def normalize_datetime(cls, v: datetime) -> datetime:
        return to_stored_datetime(v)


class AppointmentCreate(AppointmentBase):
    services: List[AppointmentServiceItem] = Field(default_factory=list)

    @field_validator('services')
    @classmethod
    def unique_services(cls, v: List[AppointmentServiceItem]) -> List[AppointmentServiceItem]:
        ids = [item.service_id for item in v]
        if len(ids) != len(set(ids)):
            raise ValueError('each service may only be attached once')
        return v


class AppointmentUpdate(StrictModel):
    pet_id: Optional[int] = None
    vet_id: Optional[int] = None
    appointment_datetime: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


class AppointmentRead(AppointmentBase):
    appointment_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    services: List[AppointmentServiceRead] = []

    model_config = ConfigDict(from_attributes=True)


class AppointmentDetail(BaseModel):
    appointment_id: int
    appointment_datetime: datetime
    status: AppointmentStatus
    pet_id: int
    pet_name: str
    species: str
    owner_id: int
    owner_name: str
    vet_id: int
    vet_name: str
    reason: Optional[str] = None


# ---------------- Invoices ----------------


class InvoiceBase(StrictModel):
    appointment_id: int
    invoice_number: str = Field(..., min_length=1, max_length=100)
    total_amount: Money = Decimal('0.00')
    tax_amount: Money = Decimal('0.00')
    issued_at: datetime = Field(default_factory=utcnow)
    paid: bool = False
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator('issued_at', 'paid_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_stored_datetime(v) if v is not None else v

    @model_validator(mode='after')
    def paid_at_requires_paid(self):
        if self.paid_at is not None and not self.paid:
            raise ValueError('paid_at can only be set on a paid invoice')
        return self


class InvoiceCreate(InvoiceBase):
    pass


class InvoiceUpdate(StrictModel):
    invoice_number: Optional[str] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    issued_at: Optional[datetime] = None
    paid: Optional[bool] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None


class InvoiceRead(InvoiceBase):
    invoice_id: int

    model_config = ConfigDict(from_attributes=True)


# ---------------- Users ----------------


def check_password_length(v: Optional[SecretStr]) -> Optional[SecretStr]:
    if v is not None and len(v.get_secret_value()) < 8:
        raise ValueError('password must be at least 8 characters')
    return v


class UserBase(StrictModel):
    username: str = Field(..., min_length=1, max_length=80)
    display_name: Optional[str] = Field(None, max_length=150)
    role: UserRole = 'reception'
    email: Optional[str] = Field(None, max_length=150, pattern=r'^[^@\s]+@[^@\s]+$')
    is_active: bool = True


class UserCreate(UserBase):
    """Either a plaintext ``password`` (hashed here) or an opaque ``password_hash``."""
    password: Optional[SecretStr] = None
    password_hash: Optional[str] = Field(None, min_length=1, max_length=255)

    @model_validator(mode='after')
    def one_credential(self):
        if (self.password is None) == (self.password_hash is None):
            raise ValueError('provide exactly one of password or password_hash')
        return self

    @field_validator('password')
    @classmethod
    def password_length(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        return check_password_length(v)


class UserUpdate(StrictModel):
    username: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[UserRole] = None
    email: Optional[str] = None
    is_active: Optional[bool] = None
    password: Optional[SecretStr] = None

    @field_validator('password')
    @classmethod
    def password_length(cls, v: Optional[SecretStr]) -> Optional[SecretStr]:
        return check_password_length(v)


class UserRead(UserBase):
    user_id: int
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Collections / nested views
class OwnerWithPets(OwnerRead):
    pets: List[PetRead] = []


class PetWithAppointments(PetRead):
    appointments: List[AppointmentRead] = []
