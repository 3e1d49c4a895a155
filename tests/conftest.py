"""Shared test fixtures and configuration."""

import os

# Set up test environment BEFORE any project imports
os.environ['TESTING'] = '1'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['LOG_LEVEL'] = 'WARNING'

from datetime import datetime
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import crud
from database import Base


@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every connection of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def owner(db):
    return crud.create_owner(db, {
        "first_name": "Alice",
        "last_name": "Ngugi",
        "phone": "+254700000001",
        "email": "alice@example.com",
        "address": "Nairobi, Kenya",
    })


@pytest.fixture
def pet(db, owner):
    return crud.create_pet(db, {
        "owner_id": owner.owner_id,
        "name": "Bella",
        "species": "Dog",
        "breed": "Labrador",
        "gender": "Female",
        "microchip": "MC-1001",
    })


@pytest.fixture
def second_pet(db, owner):
    return crud.create_pet(db, {"owner_id": owner.owner_id, "name": "Mittens", "species": "Cat"})


@pytest.fixture
def vet(db):
    return crud.create_vet(db, {
        "first_name": "Dr. John",
        "last_name": "Wambua",
        "license_number": "LIC-2020-001",
        "phone": "+254700000010",
        "email": "john.w@example.com",
        "specialization": "Surgery",
    })


@pytest.fixture
def checkup(db):
    return crud.create_service(db, {"name": "General Checkup", "price": Decimal("15.00"), "duration_minutes": 20})


@pytest.fixture
def vaccination(db):
    return crud.create_service(db, {"name": "Vaccination", "price": Decimal("25.00"), "duration_minutes": 15})


@pytest.fixture
def slot():
    return datetime(2025, 9, 20, 10, 0, 0)


@pytest.fixture
def appointment(db, pet, vet, checkup, vaccination, slot):
    return crud.create_appointment(db, {
        "pet_id": pet.pet_id,
        "vet_id": vet.vet_id,
        "appointment_datetime": slot,
        "reason": "Annual checkup",
        "created_by": "reception1",
        "services": [
            {"service_id": checkup.service_id},
            {"service_id": vaccination.service_id},
        ],
    })
