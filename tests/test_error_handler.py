"""
Unit tests for the error handling system.
"""

import logging
from unittest.mock import Mock

import pytest

from sbx_lite.core.error_handler import (
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    ExitCode,
)
from sbx_lite.core.exceptions import (
    ApplyError,
    ArchiveIntegrityError,
    BackupError,
    ConfigurationError,
    DecryptionError,
    ExternalValidationError,
    RestoreInterrupted,
    RollbackError,
    ServiceError,
    UserInputError,
)


class TestErrorHandler:
    """Test cases for ErrorHandler class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.logger = Mock(spec=logging.Logger)
        self.error_handler = ErrorHandler(logger=self.logger)

    @pytest.mark.parametrize("error, category, exit_code", [
        (ConfigurationError("bad"), ErrorCategory.CONFIGURATION, ExitCode.USER_INPUT),
        (UserInputError("cancelled"), ErrorCategory.USER_INPUT, ExitCode.USER_INPUT),
        (DecryptionError("wrong password"), ErrorCategory.USER_INPUT, ExitCode.USER_INPUT),
        (BackupError("disk full"), ErrorCategory.BACKUP, ExitCode.FAILURE),
        (ArchiveIntegrityError("corrupt"), ErrorCategory.INTEGRITY, ExitCode.INTEGRITY),
        (ExternalValidationError("check failed"), ErrorCategory.EXTERNAL_VALIDATION, ExitCode.EXTERNAL_VALIDATION),
        (ApplyError("rename failed"), ErrorCategory.APPLY, ExitCode.APPLY),
        (RestoreInterrupted(15), ErrorCategory.APPLY, ExitCode.APPLY),
        (RollbackError("undo failed"), ErrorCategory.ROLLBACK, ExitCode.ROLLBACK_FAILED),
        (ServiceError("no start"), ErrorCategory.SERVICE, ExitCode.SERVICE),
    ])
    def test_categorize_errors(self, error, category, exit_code):
        """Test each exception maps to its category and exit code."""
        error_info = self.error_handler.categorize_error(error)

        assert error_info.category == category
        assert error_info.exit_code == exit_code
        assert len(error_info.remediation_steps) > 0

    def test_categorize_unknown_error(self):
        """Test categorization of unknown errors."""
        error_info = self.error_handler.categorize_error(RuntimeError("surprise"))

        assert error_info.category == ErrorCategory.UNKNOWN
        assert error_info.exit_code == ExitCode.FAILURE

    def test_categorize_standard_python_error(self):
        """Test standard errors fall back to their mapping."""
        error_info = self.error_handler.categorize_error(PermissionError("denied"))

        assert error_info.category == ErrorCategory.CONFIGURATION

    def test_handle_critical_error_logging(self):
        """Test critical errors are logged at critical level."""
        self.error_handler.handle_error(RollbackError("undo failed"), ErrorContext(operation="Restore"))

        self.logger.critical.assert_called_once()
        extra = self.logger.critical.call_args.kwargs["extra"]
        assert extra["exit_code"] == 6
        assert extra["operation"] == "Restore"

    def test_handle_medium_error_logging(self):
        """Test medium-severity errors are logged as warnings."""
        self.error_handler.handle_error(UserInputError("cancelled"))

        self.logger.warning.assert_called_once()

    def test_severity_of_integrity_error(self):
        """Test integrity errors are high severity."""
        error_info = self.error_handler.categorize_error(ArchiveIntegrityError("bad"))

        assert error_info.severity == ErrorSeverity.HIGH


class TestErrorReport:
    """Test the rendered error report."""

    def setup_method(self):
        self.error_handler = ErrorHandler(logger=Mock(spec=logging.Logger))

    def report(self, error):
        return "\n".join(self.error_handler.format_report(self.error_handler.categorize_error(error)))

    def test_untouched_report(self):
        """Test errors before mutation say nothing was modified."""
        text = self.report(ArchiveIntegrityError(
            "Certificate set incomplete for domain: example.com",
            details={"domain": "example.com"}
        ))

        assert "ArchiveIntegrityError: Certificate set incomplete" in text
        assert "domain: example.com" in text
        assert "No live files were modified." in text
        assert "Suggested actions:" in text

    def test_rolled_back_report(self):
        """Test a rolled back failure says so."""
        error = ApplyError("rename failed", details={"rolled_back": True, "rollback": "rolled_back"})

        text = self.report(error)

        assert "Rollback succeeded" in text
        assert "rollback state: rolled_back" in text
        assert "rolled_back: True" not in text

    def test_rollback_failed_report(self):
        """Test a failed rollback is reported loudly."""
        text = self.report(RollbackError("undo failed", details={"failed_artifacts": "config.json: EROFS"}))

        assert "ROLLBACK FAILED" in text
        assert "failed_artifacts: config.json: EROFS" in text

    def test_service_error_report(self):
        """Test a service failure after commit says files are correct."""
        text = self.report(ServiceError("sing-box failed to start", details={"committed": True}))

        assert "Files were applied correctly" in text

    def test_service_not_restored_after_rollback(self):
        """Test a rollback that could not restart the service names it separately."""
        error = ApplyError("rename failed", details={"rolled_back": True, "service": "sing-box", "service_restored": False})

        text = self.report(error)

        assert "Rollback succeeded" in text
        assert "Service sing-box failed to restart after rollback" in text
        assert "service_restored:" not in text

    def test_rollback_failure_with_stopped_service(self):
        """Test a failed rollback also mentions the stopped service."""
        text = self.report(RollbackError("undo failed", details={"service": "sing-box", "service_restored": False}))

        assert "ROLLBACK FAILED" in text
        assert "Service sing-box also failed to restart after rollback." in text

    def test_check_output_included(self):
        """Test the config check output is shown."""
        text = self.report(ExternalValidationError("rejected", output="line one\nline two"))

        assert "check output:" in text
        assert "    line two" in text
