"""
Tests for the CLI interface.
"""

import os
import time

import pytest
import yaml
from click.testing import CliRunner

from sbx_lite import __version__
from sbx_lite.backup.manager import BackupManager
from sbx_lite.backup.retention import SECONDS_PER_DAY
from sbx_lite.cli.main import main

from conftest import CONFIG_JSON, FakeConfigChecker, FakeServiceController


class TestCLI:
    """Test cases for the main CLI group."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def test_main_help(self):
        """Test main command help output."""
        result = self.runner.invoke(main, ['--help'])

        assert result.exit_code == 0
        assert 'sbx-lite management toolkit' in result.output

    def test_version_flag(self):
        """Test version flag."""
        result = self.runner.invoke(main, ['--version'])

        assert result.exit_code == 0
        assert f'sbx-lite version {__version__}' in result.output

    def test_no_subcommand_prints_help(self):
        """Test running without a subcommand shows usage."""
        result = self.runner.invoke(main, [])

        assert result.exit_code == 0
        assert 'backup' in result.output

    def test_backup_help(self):
        """Test backup group help lists its commands."""
        result = self.runner.invoke(main, ['backup', '--help'])

        assert result.exit_code == 0
        for command in ('create', 'restore', 'list', 'cleanup'):
            assert command in result.output

    def test_missing_config_file(self, tmp_path):
        """Test a nonexistent --config path is a usage error."""
        result = self.runner.invoke(main, ['--config', str(tmp_path / 'absent.yaml'), 'backup', 'list'])

        assert result.exit_code == 2


class TestBackupCommands:
    """Test the backup subcommands against a simulated live system."""

    @pytest.fixture(autouse=True)
    def setup_environment(self, tmp_path, context, populate_live):
        self.runner = CliRunner()
        self.context = context
        self.controller = FakeServiceController(active=True)
        self.checker = FakeConfigChecker()
        populate_live()

        self.config_file = tmp_path / 'sbx.yaml'
        self.config_file.write_text(yaml.safe_dump(context.model_dump(mode='json')))

    def factory(self, context):
        return BackupManager(
            context,
            service_controller=self.controller,
            config_checker=self.checker,
            environ={},
        )

    def invoke(self, *args, **kwargs):
        return self.runner.invoke(
            main,
            ['--config', str(self.config_file), 'backup', *args],
            obj={'manager_factory': self.factory},
            **kwargs
        )

    def archives(self):
        return sorted(self.context.paths.backup_dir.glob('sbx-backup-*.tar.gz*'))

    def test_create(self):
        """Test creating an unencrypted backup."""
        result = self.invoke('create')

        assert result.exit_code == 0
        assert 'Backup created' in result.output
        assert len(self.archives()) == 1

    def test_create_encrypted_shows_key_file(self):
        """Test an encrypted backup reports its generated key file."""
        result = self.invoke('create', '--encrypt')

        assert result.exit_code == 0
        assert 'Key file' in result.output
        assert self.archives()[0].name.endswith('.tar.gz.enc')

    def test_password_implies_encrypt(self):
        """Test --password alone produces an encrypted archive without a key file."""
        result = self.invoke('create', '--password', 'correct horse battery staple')

        assert result.exit_code == 0
        assert self.archives()[0].name.endswith('.enc')
        assert not self.context.paths.key_dir.exists()

    def test_restore_with_force(self):
        """Test a forced restore succeeds and reports the certificates."""
        self.invoke('create')
        self.context.paths.config_file.unlink()

        result = self.invoke('restore', str(self.archives()[0]), '--force')

        assert result.exit_code == 0
        assert 'Restore completed' in result.output
        assert 'example.com' in result.output
        assert self.context.paths.config_file.read_bytes() == CONFIG_JSON

    def test_restore_confirmation_prompt(self):
        """Test the interactive prompt accepts a yes."""
        self.invoke('create')

        result = self.invoke('restore', str(self.archives()[0]), input='y\n')

        assert result.exit_code == 0
        assert 'Restore completed' in result.output

    def test_restore_declined(self):
        """Test declining the prompt exits with the user-input code."""
        self.invoke('create')

        result = self.invoke('restore', str(self.archives()[0]), input='n\n')

        assert result.exit_code == 2
        assert 'No live files were modified' in result.output

    def test_restore_encrypted_with_password(self):
        """Test an encrypted archive restores with its password."""
        self.invoke('create', '--password', 'correct horse battery staple')

        result = self.invoke('restore', str(self.archives()[0]), '--force', '--password', 'correct horse battery staple')

        assert result.exit_code == 0

    def test_restore_wrong_password(self):
        """Test a wrong password exits with the user-input code."""
        self.invoke('create', '--password', 'correct horse battery staple')

        result = self.invoke('restore', str(self.archives()[0]), '--force', '--password', 'wrong')

        assert result.exit_code == 2
        assert 'DecryptionError' in result.output

    def test_restore_corrupt_archive(self, tmp_path):
        """Test a corrupt archive exits with the integrity code."""
        corrupt = tmp_path / 'sbx-backup-20250101-000000.tar.gz'
        corrupt.write_bytes(b'this is not gzip data')

        result = self.invoke('restore', str(corrupt), '--force')

        assert result.exit_code == 3
        assert 'ArchiveIntegrityError' in result.output

    def test_restore_rejected_by_config_check(self):
        """Test a config rejected by sing-box exits with the validation code."""
        self.invoke('create')
        self.checker.ok = False
        self.checker.output = 'FATAL decode config'

        result = self.invoke('restore', str(self.archives()[0]), '--force')

        assert result.exit_code == 4
        assert 'FATAL decode config' in result.output

    def test_restore_service_start_failure(self):
        """Test a service that will not start exits with the service code."""
        self.invoke('create')
        self.controller.fail_start = True

        result = self.invoke('restore', str(self.archives()[0]), '--force')

        assert result.exit_code == 7
        assert 'Files were applied correctly' in result.output

    def test_list_empty(self):
        """Test listing with no backups."""
        result = self.invoke('list')

        assert result.exit_code == 0
        assert 'No backups found' in result.output

    def test_list(self):
        """Test listing shows created backups."""
        self.invoke('create')

        result = self.invoke('list')

        assert result.exit_code == 0
        assert 'Available Backups' in result.output
        assert 'Total: 1 backup(s)' in result.output

    def test_cleanup(self):
        """Test cleanup deletes archives older than the window."""
        self.invoke('create')
        archive = self.archives()[0]
        past = time.time() - 10 * SECONDS_PER_DAY
        os.utime(archive, (past, past))

        result = self.invoke('cleanup', '--retention-days', '5')

        assert result.exit_code == 0
        assert 'Deleted 1 old backup(s)' in result.output
        assert not archive.exists()

    def test_cleanup_nothing_to_do(self):
        """Test cleanup with only fresh archives."""
        self.invoke('create')

        result = self.invoke('cleanup')

        assert result.exit_code == 0
        assert 'No old backups to clean up' in result.output

    def test_cleanup_negative_window(self):
        """Test a negative window exits with the user-input code."""
        result = self.invoke('cleanup', '--retention-days', '-1')

        assert result.exit_code == 2
