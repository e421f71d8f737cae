"""
Shared fixtures for the booking backend test suite

Tests run against an in-memory SQLite database (single shared connection).
Tables are created and dropped around every test so each test starts from
an empty ledger.
"""

import os

# Must be set before config/database are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DISABLE_SCHEDULER"] = "true"
os.environ["ENVIRONMENT"] = "development"

from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from config import Config
from database import SessionLocal, engine, get_db
from middleware.rate_limiter import rate_limiter
from models import Base, Booking, BookingStatus, PartnerTier, PayoutStatus, Service, User, UserRole
from services.booking_service import BookingService, CreateBookingRequest


@pytest.fixture
def db_session():
    """Fresh schema and session per test"""
    Base.metadata.create_all(bind=engine)
    rate_limiter.reset()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db_session):
    def _make_user(balance=0, role=UserRole.USER.value, name="Test User", **fields):
        user = User(name=name, balance=Decimal(balance), role=role, **fields)
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def booker(make_user):
    return make_user(balance=1_000_000, name="Booker")


@pytest.fixture
def partner(make_user):
    return make_user(role=UserRole.PARTNER.value, name="Partner", partner_tier=PartnerTier.GOLD.value)


@pytest.fixture
def admin(make_user):
    return make_user(role=UserRole.ADMIN.value, name="Admin")


@pytest.fixture
def outsider(make_user):
    return make_user(balance=500_000, name="Outsider")


@pytest.fixture
def make_service(db_session):
    def _make_service(owner, price=300_000, duration="session", available=True, activity="dinner"):
        service = Service(
            user_id=owner.id,
            activity=activity,
            title=f"{activity.title()} date",
            price=Decimal(price),
            duration=duration,
            available=available,
        )
        db_session.add(service)
        db_session.commit()
        return service

    return _make_service


@pytest.fixture
def service(make_service, partner):
    return make_service(partner)


@pytest.fixture
def create_booking(db_session, booker, partner, service):
    """Book the default service; keyword overrides go into the request"""

    def _create_booking(**overrides):
        fields = dict(
            provider_id=partner.id,
            service_id=service.id,
            date="2026-11-20",
            time="19:00",
            location="District 1, Ho Chi Minh City",
        )
        fields.update(overrides)
        booker_id = fields.pop("booker_id", booker.id)
        created = BookingService.create_booking(db_session, booker_id, CreateBookingRequest(**fields))
        return db_session.get(Booking, created.booking_id)

    return _create_booking


@pytest.fixture
def drive_booking(db_session):
    """Walk a pending booking forward through the normal flow up to the given status"""
    steps = [
        (BookingStatus.ACCEPTED.value, lambda b: BookingService.accept_booking(db_session, b.id, b.partner_id)),
        (BookingStatus.ARRIVED.value, lambda b: BookingService.check_in(db_session, b.id, b.partner_id)),
        (BookingStatus.IN_PROGRESS.value, lambda b: BookingService.start_booking(db_session, b.id, b.partner_id)),
        (
            BookingStatus.COMPLETED_PENDING.value,
            lambda b: BookingService.finish_booking(db_session, b.id, b.partner_id),
        ),
        (BookingStatus.COMPLETED.value, lambda b: BookingService.confirm_completion(db_session, b.id, b.user_id)),
    ]

    def _drive(booking, target):
        for status, step in steps:
            step(booking)
            if status == target:
                break
        assert booking.status == target
        return booking

    return _drive


@pytest.fixture
def insert_completed_booking(db_session):
    """Completed booking row written directly, bypassing the ledger"""

    def _insert(user, partner, total=300_000, fee=72_000):
        booking = Booking(
            user_id=user.id,
            partner_id=partner.id,
            activity="coffee",
            duration_hours=3,
            original_amount=Decimal(total),
            total_amount=Decimal(total),
            platform_fee=Decimal(fee),
            partner_earning=Decimal(total - fee),
            status=BookingStatus.COMPLETED.value,
            payout_status=PayoutStatus.PAID.value,
            completed_at=datetime.utcnow(),
            rewards_processed_at=datetime.utcnow(),
        )
        db_session.add(booking)
        db_session.commit()
        return booking

    return _insert


def make_token(user_id: str) -> str:
    return jwt.encode({"sub": user_id}, Config.AUTH_JWT_SECRET, algorithm=Config.AUTH_JWT_ALGORITHM)


@pytest.fixture
def auth_headers():
    def _auth_headers(user, **extra):
        headers = {"Authorization": f"Bearer {make_token(user.id)}"}
        headers.update(extra)
        return headers

    return _auth_headers


@pytest.fixture
def client(db_session):
    """HTTP client whose requests share the test session"""
    from booking_server import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
