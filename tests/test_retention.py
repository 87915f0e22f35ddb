"""
Tests for retention enforcement.
"""

import os
import time

import pytest

from sbx_lite.backup.retention import SECONDS_PER_DAY, RetentionEnforcer
from sbx_lite.core.exceptions import UserInputError

NOW = 1_750_000_000.0


def touch(path, age_days):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"archive")
    mtime = NOW - age_days * SECONDS_PER_DAY
    os.utime(path, (mtime, mtime))
    return path


class TestRetentionEnforcer:
    """Test cases for RetentionEnforcer."""

    def test_thirty_day_window(self, context):
        """Test a 31-day-old archive is deleted and a 29-day-old one kept."""
        backup_dir = context.paths.backup_dir
        old = touch(backup_dir / "sbx-backup-20250101-000000.tar.gz", 31)
        recent = touch(backup_dir / "sbx-backup-20250103-000000.tar.gz", 29)

        deleted = RetentionEnforcer(context, now=NOW).cleanup(30)

        assert deleted == 1
        assert not old.exists()
        assert recent.exists()

    def test_encrypted_archive_and_key_file(self, context):
        """Test an expired encrypted archive takes its key file with it."""
        backup_dir = context.paths.backup_dir
        old = touch(backup_dir / "sbx-backup-20250101-000000.tar.gz.enc", 40)
        key_file = touch(context.paths.key_dir / "sbx-backup-20250101-000000.key", 40)
        other_key = touch(context.paths.key_dir / "sbx-backup-20250105-000000.key", 40)

        deleted = RetentionEnforcer(context, now=NOW).cleanup(30)

        assert deleted == 1
        assert not old.exists()
        assert not key_file.exists()
        assert other_key.exists()

    def test_files_outside_grammar_untouched(self, context):
        """Test unrelated files in the backup directory are never deleted."""
        backup_dir = context.paths.backup_dir
        unrelated = [
            touch(backup_dir / "notes.txt", 400),
            touch(backup_dir / "sbx-backup-latest.tar.gz", 400),
            touch(backup_dir / "other-20250101-000000.tar.gz", 400),
            touch(backup_dir / "sbx-backup-20250101-000000.tar.gz.partial", 400),
        ]

        assert RetentionEnforcer(context, now=NOW).cleanup(30) == 0
        assert all(path.exists() for path in unrelated)

    def test_zero_day_window(self, context):
        """Test a zero-day window deletes every dated archive."""
        backup_dir = context.paths.backup_dir
        touch(backup_dir / "sbx-backup-20250101-000000.tar.gz", 1)
        touch(backup_dir / "sbx-backup-20250102-000000-1.tar.gz.enc", 2)

        assert RetentionEnforcer(context, now=NOW).cleanup(0) == 2

    def test_negative_window_rejected(self, context):
        """Test a negative retention window is a user error."""
        with pytest.raises(UserInputError):
            RetentionEnforcer(context, now=NOW).cleanup(-1)

    def test_configured_window_used_by_default(self, context):
        """Test the configured retention window applies when none is given."""
        context.backup.retention_days = 7
        touch(context.paths.backup_dir / "sbx-backup-20250101-000000.tar.gz", 8)

        assert RetentionEnforcer(context, now=NOW).cleanup() == 1

    def test_missing_backup_dir(self, context):
        """Test cleanup of a missing directory deletes nothing."""
        assert RetentionEnforcer(context).cleanup(30) == 0

    def test_list_archives_newest_first(self, context):
        """Test listing orders archives by modification time."""
        backup_dir = context.paths.backup_dir
        touch(backup_dir / "sbx-backup-20250101-000000.tar.gz", 10)
        touch(backup_dir / "sbx-backup-20250110-000000.tar.gz.enc", 1)
        touch(context.paths.key_dir / "sbx-backup-20250110-000000.key", 1)
        touch(backup_dir / "readme.txt", 0)

        archives = RetentionEnforcer(context).list_archives()

        assert [a.name for a in archives] == ["sbx-backup-20250110-000000", "sbx-backup-20250101-000000"]
        assert archives[0].encrypted
        assert archives[0].key_file == context.paths.key_dir / "sbx-backup-20250110-000000.key"
        assert archives[1].key_file is None

    def test_real_clock(self, context):
        """Test the enforcer works against the wall clock."""
        fresh = context.paths.backup_dir / "sbx-backup-20250101-000000.tar.gz"
        fresh.parent.mkdir(parents=True)
        fresh.write_bytes(b"archive")
        stale_time = time.time() - 31 * SECONDS_PER_DAY
        stale = context.paths.backup_dir / "sbx-backup-20240101-000000.tar.gz"
        stale.write_bytes(b"archive")
        os.utime(stale, (stale_time, stale_time))

        assert RetentionEnforcer(context).cleanup(30) == 1
        assert fresh.exists()
