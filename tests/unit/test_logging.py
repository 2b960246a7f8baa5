"""
Unit tests for loguru logging setup.
"""

import pytest
from loguru import logger

from nhis_claims.core.config import reset_claims_settings
from nhis_claims.utils.logging import get_logger, setup_logging, setup_logging_from_settings


@pytest.mark.unit
class TestLoggingSetup:
    """Tests for log sinks."""

    def test_file_sink_receives_bound_records(self, tmp_path):
        """Test records are written with the bound component name."""
        log_file = tmp_path / "logs" / "claims.log"
        setup_logging(level="DEBUG", log_file=str(log_file))
        try:
            get_logger("nhis_claims.batches").info("Batch BATCH-2025-000001 closed")
        finally:
            logger.remove()

        content = log_file.read_text()
        assert "nhis_claims.batches" in content
        assert "Batch BATCH-2025-000001 closed" in content

    def test_level_filters_debug(self, tmp_path):
        """Test records below the configured level are dropped."""
        log_file = tmp_path / "claims.log"
        setup_logging(level="WARNING", log_file=str(log_file))
        try:
            get_logger("nhis_claims.test").debug("hidden detail")
            get_logger("nhis_claims.test").warning("visible warning")
        finally:
            logger.remove()

        content = log_file.read_text()
        assert "hidden detail" not in content
        assert "visible warning" in content

    def test_settings_drive_sinks(self, tmp_path, monkeypatch):
        """Test level and file sink are taken from CLAIMS_ settings."""
        log_file = tmp_path / "settings.log"
        monkeypatch.setenv("CLAIMS_LOG_LEVEL", "ERROR")
        monkeypatch.setenv("CLAIMS_LOG_FILE", str(log_file))
        reset_claims_settings()
        setup_logging_from_settings()
        try:
            get_logger("nhis_claims.reconciliation").warning("below threshold")
            get_logger("nhis_claims.reconciliation").error("Reimbursement failed")
        finally:
            logger.remove()
            reset_claims_settings()

        content = log_file.read_text()
        assert "below threshold" not in content
        assert "Reimbursement failed" in content
