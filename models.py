from decimal import Decimal

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Numeric, Text, DateTime, Date, Index, Enum, UniqueConstraint, CheckConstraint
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship, validates
from database import Base, utcnow


PET_GENDERS = ('Male', 'Female', 'Unknown')
APPOINTMENT_STATUSES = ('scheduled', 'completed', 'cancelled', 'no-show')
USER_ROLES = ('admin', 'reception', 'vet', 'accountant')


class Owners(Base):
    __tablename__ = "owners"
    __table_args__ = (
        UniqueConstraint('phone', name='uq_owner_phone'),
        UniqueConstraint('email', name='uq_owner_email'),
    )

    owner_id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=False)
    email = Column(String(150), nullable=True)
    address = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    # One owner -> many pets; deleting an owner with pets is refused
    pets = relationship("Pets", back_populates="owner", passive_deletes="all")


class Pets(Base):
    __tablename__ = "pets"
    __table_args__ = (
        UniqueConstraint('microchip', name='uq_pet_microchip'),
    )

    pet_id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("owners.owner_id", onupdate="CASCADE", ondelete="RESTRICT"), nullable=False)
    name = Column(String(120), nullable=False)
    species = Column(String(50), nullable=False)
    breed = Column(String(100), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(Enum(*PET_GENDERS, name='pet_gender'), nullable=False, default='Unknown')
    microchip = Column(String(64), nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    # Relationships
    owner = relationship("Owners", back_populates="pets")
    appointments = relationship("Appointments", back_populates="pet", cascade="all, delete-orphan")


class Vets(Base):
    __tablename__ = "vets"
    __table_args__ = (
        UniqueConstraint('license_number', name='uq_vet_license'),
        UniqueConstraint('email', name='uq_vet_email'),
    )

    vet_id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    license_number = Column(String(100), nullable=False)
    phone = Column(String(30), nullable=True)
    email = Column(String(150), nullable=True)
    specialization = Column(String(150), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    # Appointments assigned; a vet with bookings cannot be removed
    appointments = relationship("Appointments", back_populates="vet", passive_deletes="all")


class Services(Base):
    __tablename__ = "services"
    __table_args__ = (
        UniqueConstraint('name', name='uq_service_name'),
    )

    service_id = Column(Integer, primary_key=True)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    duration_minutes = Column(Integer, nullable=True, default=30)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    appointment_lines = relationship("AppointmentServices", back_populates="service", passive_deletes="all")


class Appointments(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint('vet_id', 'appointment_datetime', name='uq_vet_datetime'),
    )

    appointment_id = Column(Integer, primary_key=True)
    pet_id = Column(Integer, ForeignKey("pets.pet_id", onupdate="CASCADE", ondelete="CASCADE"), nullable=False)
    vet_id = Column(Integer, ForeignKey("vets.vet_id", onupdate="CASCADE", ondelete="RESTRICT"), nullable=False)
    appointment_datetime = Column(DateTime, nullable=False)
    status = Column(Enum(*APPOINTMENT_STATUSES, name='appointment_status'), nullable=False, default='scheduled')
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    # relationships
    pet = relationship("Pets", back_populates="appointments")
    vet = relationship("Vets", back_populates="appointments")
    services = relationship("AppointmentServices", back_populates="appointment", cascade="all, delete-orphan")
    invoice = relationship("Invoices", back_populates="appointment", uselist=False, cascade="all, delete-orphan")


class AppointmentServices(Base):
    __tablename__ = "appointment_services"
    __table_args__ = (
        CheckConstraint('quantity >= 1', name='ck_as_quantity'),
    )

    appointment_id = Column(Integer, ForeignKey("appointments.appointment_id", onupdate="CASCADE", ondelete="CASCADE"), primary_key=True)
    service_id = Column(Integer, ForeignKey("services.service_id", onupdate="CASCADE", ondelete="RESTRICT"), primary_key=True)
    quantity = Column(Integer, nullable=False, default=1)
    # snapshot of the catalog price when the service was provided
    price_at_time = Column(Numeric(10, 2), nullable=False)

    appointment = relationship("Appointments", back_populates="services")
    service = relationship("Services", back_populates="appointment_lines")

    @validates("price_at_time")
    def _freeze_price_at_time(self, key, value):
        if self.price_at_time is not None and Decimal(str(value)) != Decimal(str(self.price_at_time)):
            raise ValueError("price_at_time is a snapshot and cannot be changed")
        return value


class Invoices(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint('invoice_number', name='uq_invoice_number'),
        UniqueConstraint('appointment_id', name='uq_invoice_appointment'),
    )

    invoice_id = Column(Integer, primary_key=True)
    appointment_id = Column(Integer, ForeignKey("appointments.appointment_id", onupdate="CASCADE", ondelete="CASCADE"), nullable=False)
    invoice_number = Column(String(100), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal('0.00'))
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    appointment = relationship("Appointments", back_populates="invoice")


class Users(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint('username', name='uq_users_username'),
        UniqueConstraint('email', name='uq_users_email'),
    )

    user_id = Column(Integer, primary_key=True)
    username = Column(String(80), nullable=False)
    display_name = Column(String(150), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(*USER_ROLES, name='user_role'), nullable=False, default='reception')
    email = Column(String(150), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


Index('idx_pets_owner', Pets.owner_id)
Index('idx_appointments_pet', Appointments.pet_id)
Index('idx_appointments_vet', Appointments.vet_id)
Index('idx_appointments_dt', Appointments.appointment_datetime)
Index('idx_as_service', AppointmentServices.service_id)
Index('idx_invoice_issued_at', Invoices.issued_at)
