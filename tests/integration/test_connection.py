"""
Integration tests for the global engine, request sessions and health check.
"""

import pytest

from nhis_claims.core.config import reset_claims_settings
from nhis_claims.db.connection import (
    check_db_connection,
    close_db_connection,
    get_session,
    get_session_maker,
    init_db,
)
from nhis_claims.services.claims_service import ClaimsService


@pytest.fixture
async def configured_database(monkeypatch, tmp_path):
    """Point the global engine at a throwaway SQLite file."""
    monkeypatch.setenv("CLAIMS_ENVIRONMENT", "testing")
    monkeypatch.setenv("CLAIMS_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'global.db'}")
    reset_claims_settings()
    await close_db_connection()
    await init_db()
    yield
    await close_db_connection()
    reset_claims_settings()


async def submit_in_request(facility_caller, claim_payload):
    requests = get_session()
    session = await requests.__anext__()
    claim = await ClaimsService(session).submit(claim_payload(), facility_caller)
    return requests, claim


async def stored_name(claim_id) -> str:
    async with get_session_maker()() as session:
        stored = await ClaimsService(session).get_claim_or_raise(claim_id)
        return stored.beneficiary_name


@pytest.mark.integration
class TestRequestSession:
    """Tests for the request-scoped session generator."""

    @pytest.mark.asyncio
    async def test_pending_changes_committed_on_exit(
        self, configured_database, facility_caller, claim_payload
    ):
        """Test work left pending at the end of a request is committed."""
        requests, claim = await submit_in_request(facility_caller, claim_payload)
        claim.beneficiary_name = "Amina B. Yusuf"

        with pytest.raises(StopAsyncIteration):
            await requests.__anext__()

        assert await stored_name(claim.id) == "Amina B. Yusuf"

    @pytest.mark.asyncio
    async def test_error_rolls_back_and_propagates(
        self, configured_database, facility_caller, claim_payload
    ):
        """Test an error inside a request discards pending work and re-raises."""
        requests, claim = await submit_in_request(facility_caller, claim_payload)
        claim.beneficiary_name = "Never Saved"

        with pytest.raises(RuntimeError):
            await requests.athrow(RuntimeError("handler failed"))

        assert await stored_name(claim.id) == "Amina Bello"


@pytest.mark.integration
class TestConnectionHealth:
    """Tests for the connection health check and pool shutdown."""

    @pytest.mark.asyncio
    async def test_healthy_database(self, configured_database):
        """Test a reachable database reports healthy."""
        assert await check_db_connection() is True

    @pytest.mark.asyncio
    async def test_unreachable_database(self, monkeypatch, tmp_path):
        """Test an unusable database URL reports unhealthy instead of raising."""
        missing = tmp_path / "missing" / "nested" / "claims.db"
        monkeypatch.setenv("CLAIMS_ENVIRONMENT", "testing")
        monkeypatch.setenv("CLAIMS_DATABASE_URL", f"sqlite+aiosqlite:///{missing}")
        reset_claims_settings()
        await close_db_connection()
        try:
            assert await check_db_connection() is False
        finally:
            await close_db_connection()
            reset_claims_settings()

    @pytest.mark.asyncio
    async def test_close_resets_session_maker(self, configured_database):
        """Test closing the pool drops the cached engine and session maker."""
        before = get_session_maker()
        await close_db_connection()
        assert get_session_maker() is not before
        assert await check_db_connection() is True
