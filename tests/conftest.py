"""
Pytest Configuration and Fixtures.
Shared test fixtures for all test modules.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from nhis_claims.core.enums import CallerRole
from nhis_claims.db.connection import build_session_maker, init_db
from nhis_claims.schemas.caller import Caller, DocumentReference
from nhis_claims.schemas.claim import ClaimSubmit
from nhis_claims.services.notifications import (
    InMemoryNotificationSink,
    NotificationDispatcher,
)

TPA_ID = "TPA-001"
FACILITY_ID = "FAC-001"


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite engine; each connection waits on locks instead of failing."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


# =============================================================================
# Callers
# =============================================================================


@pytest.fixture
def facility_caller():
    return Caller(
        actor_id="facility-user",
        role=CallerRole.FACILITY,
        facility_id=FACILITY_ID,
        name="Facility Clerk",
    )


@pytest.fixture
def tpa_caller():
    return Caller(
        actor_id="tpa-user",
        role=CallerRole.TPA,
        tpa_id=TPA_ID,
        name="TPA Officer",
        email="officer@tpa.example.com",
    )


@pytest.fixture
def other_tpa_caller():
    return Caller(actor_id="other-tpa-user", role=CallerRole.TPA, tpa_id="TPA-999")


@pytest.fixture
def admin_caller():
    return Caller(
        actor_id="nhis-admin",
        role=CallerRole.NHIS_ADMIN,
        name="NHIS Desk Officer",
        email="desk@nhis.gov.ng",
    )


# =============================================================================
# Notifications & Documents
# =============================================================================


@pytest.fixture
def notification_sink():
    return InMemoryNotificationSink()


@pytest.fixture
def notifier(notification_sink):
    return NotificationDispatcher(notification_sink)


@pytest.fixture
def cover_letter():
    return DocumentReference(
        url="https://storage.example.com/letters/cover.pdf",
        filename="cover.pdf",
    )


# =============================================================================
# Claim Payloads
# =============================================================================


def make_claim_payload(**overrides) -> ClaimSubmit:
    """Build a valid claim submission; costs match the Emergency CS standard."""
    data = {
        "unique_claim_id": f"CLM-{uuid4().hex[:10].upper()}",
        "beneficiary_id": f"BEN-{uuid4().hex[:6].upper()}",
        "beneficiary_name": "Amina Bello",
        "facility_id": FACILITY_ID,
        "tpa_id": TPA_ID,
        "primary_diagnosis": "Obstructed labour",
        "treatment_procedure": "Emergency CS",
        "date_of_admission": date(2025, 3, 3),
        "date_of_discharge": date(2025, 3, 6),
        "cost_of_investigation": Decimal("25000"),
        "cost_of_procedure": Decimal("120000"),
        "cost_of_medication": Decimal("35000"),
        "cost_of_other_services": Decimal("20000"),
    }
    data.update(overrides)
    return ClaimSubmit(**data)


@pytest.fixture
def claim_payload():
    return make_claim_payload


# Configure pytest markers
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
