"""
Error handling and reporting for sbx-lite.

This module maps the exception taxonomy to categories, severities,
exit codes and remediation steps, and renders the multi-line report
printed before every non-zero exit.
"""

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from .exceptions import (
    SbxError,
    ConfigurationError,
    UserInputError,
    DecryptionError,
    BackupError,
    EncryptionError,
    ArchiveIntegrityError,
    ExternalValidationError,
    ApplyError,
    SnapshotError,
    RestoreInterrupted,
    RollbackError,
    ServiceError,
)


class ErrorCategory(str, Enum):
    """Categories of errors for better handling and reporting."""
    CONFIGURATION = "configuration"
    USER_INPUT = "user_input"
    BACKUP = "backup"
    INTEGRITY = "integrity"
    EXTERNAL_VALIDATION = "external_validation"
    APPLY = "apply"
    ROLLBACK = "rollback"
    SERVICE = "service"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Severity levels for errors."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ExitCode(int, Enum):
    """Process exit codes reported by the CLI."""
    SUCCESS = 0
    FAILURE = 1
    USER_INPUT = 2
    INTEGRITY = 3
    EXTERNAL_VALIDATION = 4
    APPLY = 5
    ROLLBACK_FAILED = 6
    SERVICE = 7


@dataclass
class ErrorContext:
    """Context information for an error occurrence."""
    timestamp: datetime = field(default_factory=datetime.now)
    operation: Optional[str] = None
    archive: Optional[str] = None
    additional_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ErrorInfo:
    """Comprehensive error information."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    exit_code: ExitCode
    context: ErrorContext
    remediation_steps: List[str]
    traceback_str: str
    live_state_changed: bool = False


class ErrorHandler:
    """
    Error handler with categorization, exit codes and report rendering.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self._error_mappings = self._build_error_mappings()
        self._remediation_guides = self._build_remediation_guides()

    def _build_error_mappings(self) -> Dict[Type[Exception], Dict[str, Any]]:
        """Build mapping of exception types to error categories and severities.

        Subclasses are listed before their parents; lookup falls back to
        the first isinstance() match in insertion order.
        """
        return {
            ConfigurationError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.USER_INPUT,
            },
            DecryptionError: {
                "category": ErrorCategory.USER_INPUT,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.USER_INPUT,
            },
            UserInputError: {
                "category": ErrorCategory.USER_INPUT,
                "severity": ErrorSeverity.MEDIUM,
                "exit_code": ExitCode.USER_INPUT,
            },
            EncryptionError: {
                "category": ErrorCategory.BACKUP,
                "severity": ErrorSeverity.CRITICAL,
                "exit_code": ExitCode.FAILURE,
            },
            BackupError: {
                "category": ErrorCategory.BACKUP,
                "severity": ErrorSeverity.CRITICAL,
                "exit_code": ExitCode.FAILURE,
            },
            ArchiveIntegrityError: {
                "category": ErrorCategory.INTEGRITY,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.INTEGRITY,
            },
            ExternalValidationError: {
                "category": ErrorCategory.EXTERNAL_VALIDATION,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.EXTERNAL_VALIDATION,
            },
            SnapshotError: {
                "category": ErrorCategory.APPLY,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.APPLY,
            },
            RestoreInterrupted: {
                "category": ErrorCategory.APPLY,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.APPLY,
            },
            ApplyError: {
                "category": ErrorCategory.APPLY,
                "severity": ErrorSeverity.CRITICAL,
                "exit_code": ExitCode.APPLY,
            },
            RollbackError: {
                "category": ErrorCategory.ROLLBACK,
                "severity": ErrorSeverity.CRITICAL,
                "exit_code": ExitCode.ROLLBACK_FAILED,
            },
            ServiceError: {
                "category": ErrorCategory.SERVICE,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.SERVICE,
            },
            FileNotFoundError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.MEDIUM,
                "exit_code": ExitCode.FAILURE,
            },
            PermissionError: {
                "category": ErrorCategory.CONFIGURATION,
                "severity": ErrorSeverity.HIGH,
                "exit_code": ExitCode.FAILURE,
            },
        }

    def _build_remediation_guides(self) -> Dict[ErrorCategory, List[str]]:
        """Build remediation guides for each error category."""
        return {
            ErrorCategory.CONFIGURATION: [
                "Check the configuration file syntax and paths",
                "Verify file and directory permissions (restore usually needs root)",
            ],
            ErrorCategory.USER_INPUT: [
                "Pass the password with --password or the BACKUP_PASSWORD variable",
                "Check that the key file in backup-keys/ matches the archive name",
                "Re-run with --force to skip the confirmation prompt",
            ],
            ErrorCategory.BACKUP: [
                "Ensure sufficient storage space in the backup directory",
                "Verify the backup directory is writable",
            ],
            ErrorCategory.INTEGRITY: [
                "Verify the archive was produced by 'sbx backup create'",
                "Do not restore archives from untrusted sources",
                "Re-copy the archive if it may have been truncated in transit",
            ],
            ErrorCategory.EXTERNAL_VALIDATION: [
                "Inspect the configuration in the archive with 'sing-box check'",
                "Make sure the installed sing-box version supports that configuration",
            ],
            ErrorCategory.APPLY: [
                "Check available disk space on the configuration volumes",
                "Check for processes holding the configuration files",
                "Live files were restored from the rollback snapshot",
            ],
            ErrorCategory.ROLLBACK: [
                "Inspect /etc/sing-box, the certificate directory and the unit file manually",
                "Restore the last known good backup with 'sbx backup restore --force'",
            ],
            ErrorCategory.SERVICE: [
                "Configuration files are in place; check 'systemctl status sing-box'",
                "Inspect service logs with 'journalctl -u sing-box'",
            ],
            ErrorCategory.UNKNOWN: [
                "Review the log output for additional context",
            ],
        }

    def categorize_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """
        Categorize an error and create comprehensive error information.

        Args:
            error: The exception that occurred
            context: Optional context information

        Returns:
            ErrorInfo object with categorized error details
        """
        mapping = self._error_mappings.get(type(error))
        if not mapping:
            for exc_type, exc_mapping in self._error_mappings.items():
                if isinstance(error, exc_type):
                    mapping = exc_mapping
                    break

        if not mapping:
            mapping = {
                "category": ErrorCategory.UNKNOWN,
                "severity": ErrorSeverity.MEDIUM,
                "exit_code": ExitCode.FAILURE,
            }

        category = mapping["category"]
        details = getattr(error, "details", {}) or {}

        return ErrorInfo(
            error=error,
            category=category,
            severity=mapping["severity"],
            exit_code=mapping["exit_code"],
            context=context or ErrorContext(),
            remediation_steps=self._remediation_guides.get(category, []),
            traceback_str="".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            live_state_changed=category in (ErrorCategory.ROLLBACK, ErrorCategory.SERVICE)
            or bool(details.get("committed")),
        )

    def handle_error(self, error: Exception, context: Optional[ErrorContext] = None) -> ErrorInfo:
        """Categorize and log an error."""
        error_info = self.categorize_error(error, context)
        self._log_error(error_info)
        return error_info

    def _log_error(self, error_info: ErrorInfo) -> None:
        """Log error information with appropriate level."""
        log_data = {
            "error_type": type(error_info.error).__name__,
            "error_category": error_info.category.value,
            "severity": error_info.severity.value,
            "exit_code": int(error_info.exit_code),
            "operation": error_info.context.operation,
        }

        if error_info.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(str(error_info.error), extra=log_data)
        elif error_info.severity == ErrorSeverity.HIGH:
            self.logger.error(str(error_info.error), extra=log_data)
        else:
            self.logger.warning(str(error_info.error), extra=log_data)

        self.logger.debug(error_info.traceback_str)

    def format_report(self, error_info: ErrorInfo) -> List[str]:
        """Render the multi-line report shown before a non-zero exit."""
        error = error_info.error
        lines = [f"{type(error).__name__}: {error}"]

        details = dict(getattr(error, "details", {}) or {})
        rollback_state = details.pop("rollback", None)
        for key, value in details.items():
            if key in ("rolled_back", "committed", "service_restored"):
                continue
            lines.append(f"  {key}: {value}")

        output = getattr(error, "output", "")
        if output:
            lines.append("  check output:")
            lines.extend(f"    {line}" for line in output.strip().splitlines())

        if isinstance(error, RollbackError):
            lines.append("ROLLBACK FAILED: the live system may be in a mixed state.")
        elif details.get("rolled_back"):
            lines.append("Rollback succeeded: live files were restored to their pre-restore state.")
        elif isinstance(error, ServiceError):
            lines.append("Files were applied correctly; only the service state is affected.")
        elif not error_info.live_state_changed:
            lines.append("No live files were modified.")

        if details.get("service_restored") is False:
            service = details.get("service", "sing-box")
            if isinstance(error, RollbackError):
                lines.append(f"Service {service} also failed to restart after rollback.")
            else:
                lines.append(f"Service {service} failed to restart after rollback; files are correct, start it manually.")

        if rollback_state:
            lines.append(f"  rollback state: {rollback_state}")

        if error_info.remediation_steps:
            lines.append("Suggested actions:")
            lines.extend(f"  - {step}" for step in error_info.remediation_steps)

        return lines
