"""
Unit tests for claims core configuration.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from nhis_claims.core.config import (
    ClaimsSettings,
    get_claims_settings,
    reset_claims_settings,
)


@pytest.mark.unit
class TestClaimsSettingsDefaults:
    """Tests for default configuration values."""

    def test_default_admin_fee(self):
        """Test default admin fee is 5%."""
        settings = ClaimsSettings()
        assert settings.DEFAULT_ADMIN_FEE_PERCENTAGE == Decimal("5.00")

    def test_default_variance_thresholds(self):
        """Test default variance bands are 10% and 25%."""
        settings = ClaimsSettings()
        assert settings.VARIANCE_LOW_THRESHOLD == Decimal("10")
        assert settings.VARIANCE_MEDIUM_THRESHOLD == Decimal("25")

    def test_default_excessive_cost(self):
        """Test default excessive cost threshold."""
        assert ClaimsSettings().EXCESSIVE_COST_THRESHOLD == Decimal("1000000")

    def test_default_oversight_recipients(self):
        """Test oversight recipients are preconfigured."""
        assert "finance@nhis.gov.ng" in ClaimsSettings().OVERSIGHT_NOTIFICATION_EMAILS

    def test_currency(self):
        """Test amounts are in naira."""
        assert ClaimsSettings().CURRENCY == "NGN"


@pytest.mark.unit
class TestClaimsSettingsEnvironment:
    """Tests for environment overrides and validation."""

    def test_env_prefix(self, monkeypatch):
        """Test CLAIMS_ prefixed variables override defaults."""
        monkeypatch.setenv("CLAIMS_DEFAULT_ADMIN_FEE_PERCENTAGE", "7.5")
        monkeypatch.setenv("CLAIMS_ENVIRONMENT", "testing")
        settings = ClaimsSettings()
        assert settings.DEFAULT_ADMIN_FEE_PERCENTAGE == Decimal("7.5")
        assert settings.is_testing

    def test_admin_fee_out_of_range(self):
        """Test admin fee must be within [0, 100]."""
        with pytest.raises(ValidationError):
            ClaimsSettings(DEFAULT_ADMIN_FEE_PERCENTAGE=Decimal("101"))

    def test_medium_threshold_below_low(self):
        """Test the medium band cannot sit below the low band."""
        with pytest.raises(ValidationError):
            ClaimsSettings(VARIANCE_LOW_THRESHOLD=Decimal("30"), VARIANCE_MEDIUM_THRESHOLD=Decimal("20"))

    def test_singleton_and_reset(self, monkeypatch):
        """Test the cached instance is reused until reset."""
        reset_claims_settings()
        first = get_claims_settings()
        assert get_claims_settings() is first

        monkeypatch.setenv("CLAIMS_CURRENCY", "USD")
        reset_claims_settings()
        try:
            assert get_claims_settings().CURRENCY == "USD"
        finally:
            monkeypatch.delenv("CLAIMS_CURRENCY")
            reset_claims_settings()
