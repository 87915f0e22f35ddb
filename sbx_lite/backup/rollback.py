"""
Rollback manager for restore operations.

This module snapshots every live artifact a restore is about to replace,
applies the staged files atomically, and either commits or puts the
live system back exactly as it was.
"""

import os
import secrets
import shutil
import signal
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from sbx_lite.core.exceptions import (
    ApplyError,
    RestoreInterrupted,
    RollbackError,
    SbxError,
    ServiceError,
    SnapshotError,
)
from sbx_lite.models.backup import (
    CERTIFICATES_SUBDIR,
    CLIENT_INFO_FILENAME,
    CONFIG_FILENAME,
    SERVICE_FILENAME,
    RollbackState,
    StagedRestore,
)
from sbx_lite.models.config import SbxContext
from sbx_lite.services.base import ServiceController
from sbx_lite.utils.helpers import atomic_copy_file, create_private_temp_dir, remove_path
from sbx_lite.utils.logging import LogCategory, get_logger

logger = get_logger("backup.rollback")

CERT_FILE_MODE = 0o600
SERVICE_FILE_MODE = 0o644

_EXTRA = {"category": LogCategory.ROLLBACK}


class SnapshotEntry:
    """One live artifact covered by the rollback snapshot."""

    def __init__(self, label: str, live_path: Path, saved_path: Path, is_dir: bool):
        self.label = label
        self.live_path = live_path
        self.saved_path = saved_path
        self.is_dir = is_dir
        self.existed = False
        self.touched = False
        self.link_target: Optional[str] = None

    def __repr__(self):
        return f"SnapshotEntry({self.label!r}, existed={self.existed}, touched={self.touched}, link={self.link_target!r})"


class RollbackManager:
    """
    State machine guarding the mutation phase of a restore.

    idle -> snapshotting -> mutating -> committed | rolled_back, with
    aborted when the snapshot cannot be taken and rollback_failed when
    undoing the mutation fails.
    """

    def __init__(
        self,
        context: SbxContext,
        service_controller: ServiceController,
        auto_start: Optional[bool] = None
    ):
        self.context = context
        self.service_controller = service_controller
        self.service_name = context.service.name
        self.auto_start = context.backup.auto_start if auto_start is None else auto_start

        self.state = RollbackState.IDLE
        self.entries: Dict[str, SnapshotEntry] = {}
        self.rollback_dir: Optional[Path] = None
        self.created_dirs: List[Path] = []
        self.failures: List[str] = []
        self.service_was_running = False
        self.service_running = False
        self.service_restore_failed = False
        self.unit_touched = False
        self._outcome: Optional[RollbackState] = None

    @property
    def committed(self) -> bool:
        return self.state == RollbackState.COMMITTED

    @property
    def outcome(self) -> Optional[RollbackState]:
        return self._outcome

    def _transition(self, state: RollbackState):
        logger.debug(f"Rollback state: {self.state.value} -> {state.value}")
        self.state = state

    def _restore_plan(self, staged: StagedRestore) -> List[Tuple[str, Path, Optional[Path], bool]]:
        """(label, live path, staged source, is_dir) for every artifact the restore replaces."""
        paths = self.context.paths
        plan = [(CONFIG_FILENAME, paths.config_file, staged.config_file, False)]
        if staged.client_info is not None:
            plan.append((CLIENT_INFO_FILENAME, paths.client_info, staged.client_info, False))
        for domain in staged.domains:
            plan.append((
                f"{CERTIFICATES_SUBDIR}/{domain}",
                paths.cert_dir_base / domain,
                staged.certificates[domain].fullchain.parent,
                True,
            ))
        if staged.service_unit is not None:
            plan.append((SERVICE_FILENAME, paths.service_unit, staged.service_unit, False))
        return plan

    def snapshot(self, staged: StagedRestore):
        """
        Copy every live artifact the restore will replace.

        Artifacts absent from the live system are recorded as such; rolling
        back removes whatever the restore created in their place.
        Symlinked artifacts are recorded by their link target; apply replaces
        the link itself and rollback recreates it.

        Raises:
            SnapshotError: If any copy fails (nothing live has changed)
        """
        if self.state != RollbackState.IDLE:
            raise SnapshotError(f"Cannot snapshot in state {self.state.value}")
        self._transition(RollbackState.SNAPSHOTTING)

        try:
            self.rollback_dir = create_private_temp_dir("sbx-rollback", self.context.paths.temp_dir)
            for label, live_path, _, is_dir in self._restore_plan(staged):
                entry = SnapshotEntry(label, live_path, self.rollback_dir / label, is_dir)
                if os.path.islink(live_path):
                    entry.link_target = os.readlink(live_path)
                    entry.existed = True
                    logger.debug(f"Snapshot: {label} is a symlink to {entry.link_target}", extra=_EXTRA)
                elif os.path.lexists(live_path):
                    entry.saved_path.parent.mkdir(parents=True, exist_ok=True)
                    if is_dir:
                        shutil.copytree(live_path, entry.saved_path, symlinks=True)
                    else:
                        shutil.copy2(live_path, entry.saved_path)
                    entry.existed = True
                self.entries[label] = entry
        except OSError as e:
            self._discard_rollback_dir()
            self._transition(RollbackState.ABORTED)
            self._outcome = RollbackState.ABORTED
            raise SnapshotError(f"Failed to prepare rollback snapshot: {e}")

        existing = sum(1 for entry in self.entries.values() if entry.existed)
        logger.info(
            f"Rollback snapshot prepared ({existing} of {len(self.entries)} artifacts exist live)",
            extra=_EXTRA
        )

    def apply(self, staged: StagedRestore):
        """
        Stop the service and move every staged artifact into place.

        Raises:
            ApplyError: On any filesystem failure
        """
        if self.state != RollbackState.SNAPSHOTTING:
            raise ApplyError(f"Cannot apply restore in state {self.state.value}")
        self._transition(RollbackState.MUTATING)

        controller = self.service_controller
        if controller.available:
            self.service_was_running = controller.is_active(self.service_name)
            if self.service_was_running:
                logger.info(f"Stopping {self.service_name} service...")
                if not controller.stop(self.service_name):
                    logger.warning(f"Failed to stop {self.service_name}, continuing with restore")
        else:
            logger.warning("Service manager not available, skipping service control")

        for label, live_path, source, is_dir in self._restore_plan(staged):
            entry = self.entries.get(label)
            if entry is None:
                raise ApplyError(f"Artifact {label} was not covered by the rollback snapshot")

            entry.touched = True
            try:
                if is_dir:
                    self._swap_directory(source, live_path, file_mode=CERT_FILE_MODE)
                elif label == SERVICE_FILENAME:
                    self._ensure_parent(live_path.parent)
                    atomic_copy_file(source, live_path, mode=SERVICE_FILE_MODE)
                else:
                    self._ensure_parent(live_path.parent)
                    atomic_copy_file(source, live_path)
            except OSError as e:
                raise ApplyError(f"Failed to restore {label}: {e}", details={"artifact": label})

            if label == SERVICE_FILENAME:
                self.unit_touched = True
                if controller.available and not controller.daemon_reload():
                    logger.warning("Failed to reload systemd")

            logger.info(f"  ✓ Restored {label}", extra={"category": LogCategory.RESTORE})

    def commit(self):
        """Mark the restore as fully applied."""
        if self.state != RollbackState.MUTATING:
            raise ApplyError(f"Cannot commit in state {self.state.value}")
        self._transition(RollbackState.COMMITTED)
        logger.info("Restore committed", extra=_EXTRA)

    def cleanup(self) -> RollbackState:
        """
        Finish the transaction according to the commit flag.

        The first call decides and performs the outcome; later calls return
        it without touching files or the service.

        Raises:
            ServiceError: Committed, but the service failed to start
        """
        if self._outcome is not None:
            return self._outcome

        try:
            if self.state == RollbackState.COMMITTED:
                self._outcome = RollbackState.COMMITTED
                self._discard_rollback_dir()
                self._start_after_commit()
            elif self.state == RollbackState.MUTATING:
                self._outcome = self._rollback()
                if self._outcome == RollbackState.ROLLED_BACK:
                    self._discard_rollback_dir()
            else:
                self._transition(RollbackState.ABORTED)
                self._outcome = RollbackState.ABORTED
                self._discard_rollback_dir()
        except BaseException:
            if self._outcome is None:
                self._outcome = self.state
            raise

        return self._outcome

    def _start_after_commit(self):
        controller = self.service_controller
        if not controller.available:
            return

        if self.service_was_running or self.auto_start:
            action = "Restarting" if self.service_was_running else "Starting"
            logger.info(f"{action} {self.service_name} service...")
            if not controller.start(self.service_name):
                raise ServiceError(
                    f"{self.service_name} failed to start after restore",
                    details={"service": self.service_name, "committed": True}
                )
            self.service_running = True
            logger.info(f"  ✓ {self.service_name} is running")

    def _rollback(self) -> RollbackState:
        logger.warning("Restore failed, rolling back live files...", extra=_EXTRA)
        self.failures = []

        for entry in reversed(list(self.entries.values())):
            if not entry.touched:
                continue
            try:
                if entry.link_target is not None:
                    self._restore_link(entry)
                elif entry.existed and entry.is_dir:
                    self._swap_directory(entry.saved_path, entry.live_path)
                elif entry.existed:
                    atomic_copy_file(entry.saved_path, entry.live_path)
                else:
                    remove_path(entry.live_path)
            except OSError as e:
                self.failures.append(f"{entry.label}: {e}")
                logger.error(f"Failed to roll back {entry.label}: {e}", extra=_EXTRA)

        for directory in reversed(self.created_dirs):
            try:
                directory.rmdir()
            except OSError as e:
                logger.debug(f"Keeping directory {directory}: {e}")

        controller = self.service_controller
        if controller.available:
            if self.unit_touched and not controller.daemon_reload():
                self.failures.append("systemctl daemon-reload failed")
            if self.service_was_running:
                if controller.start(self.service_name):
                    self.service_running = True
                else:
                    self.service_restore_failed = True
                    logger.error(f"{self.service_name} did not come back after rollback", extra=_EXTRA)

        if self.failures:
            self._transition(RollbackState.ROLLBACK_FAILED)
            logger.critical(
                f"ROLLBACK FAILED for {len(self.failures)} artifact(s); "
                f"pre-restore copies kept in {self.rollback_dir}",
                extra=_EXTRA
            )
        else:
            self._transition(RollbackState.ROLLED_BACK)
            logger.warning("Rollback completed: live files restored to their pre-restore state", extra=_EXTRA)

        return self.state

    def _ensure_parent(self, directory: Path):
        """Create missing parent directories, remembering which ones were new."""
        missing = []
        current = directory
        while not current.exists():
            missing.append(current)
            current = current.parent
        for path in reversed(missing):
            path.mkdir()
            self.created_dirs.append(path)

    def _swap_directory(self, source: Path, live_path: Path, file_mode: Optional[int] = None):
        """Build a sibling copy of source and swap it in place of live_path."""
        self._ensure_parent(live_path.parent)
        tmp_dir = Path(tempfile.mkdtemp(prefix=f".{live_path.name}.", dir=live_path.parent))
        aside = None
        try:
            for item in sorted(source.iterdir()):
                target = tmp_dir / item.name
                if item.is_dir() and not item.is_symlink():
                    shutil.copytree(item, target, symlinks=True)
                else:
                    shutil.copy2(item, target, follow_symlinks=False)
                    if file_mode is not None:
                        os.chmod(target, file_mode)
            if file_mode is None:
                shutil.copystat(source, tmp_dir)

            if os.path.lexists(live_path):
                aside = live_path.with_name(f".{live_path.name}.{secrets.token_hex(4)}.old")
                os.rename(live_path, aside)
            os.rename(tmp_dir, live_path)
        except BaseException:
            if tmp_dir.exists():
                shutil.rmtree(tmp_dir, ignore_errors=True)
            if aside is not None and not os.path.lexists(live_path):
                os.rename(aside, live_path)
            raise

        if aside is not None:
            remove_path(aside)

    def _restore_link(self, entry: SnapshotEntry):
        """Put a symlinked live path back, replacing whatever apply left there."""
        live_path = entry.live_path
        tmp_link = live_path.with_name(f".{live_path.name}.{secrets.token_hex(4)}.link")
        os.symlink(entry.link_target, tmp_link)
        aside = None
        try:
            if live_path.is_dir() and not live_path.is_symlink():
                aside = live_path.with_name(f".{live_path.name}.{secrets.token_hex(4)}.old")
                os.rename(live_path, aside)
                os.rename(tmp_link, live_path)
                remove_path(aside)
            else:
                os.replace(tmp_link, live_path)
        except BaseException:
            if os.path.lexists(tmp_link):
                os.unlink(tmp_link)
            if aside is not None and os.path.lexists(aside) and not os.path.lexists(live_path):
                os.rename(aside, live_path)
            raise

    def _discard_rollback_dir(self):
        if self.rollback_dir is not None:
            shutil.rmtree(self.rollback_dir, ignore_errors=True)
            self.rollback_dir = None


class RestoreTransaction:
    """
    Scoped guard around the mutation phase of a restore.

    While open, SIGINT, SIGTERM and SIGHUP raise RestoreInterrupted so they
    unwind through the rollback path. Signals arriving during cleanup are
    held back. They are re-delivered after a successful restore and logged
    after a failed one so the rollback report still reaches the caller.
    """

    SIGNALS = tuple(
        sig for sig in (
            getattr(signal, "SIGINT", None),
            getattr(signal, "SIGTERM", None),
            getattr(signal, "SIGHUP", None),
        ) if sig is not None
    )

    def __init__(self, manager: RollbackManager):
        self.manager = manager
        self._previous_handlers: Dict[int, object] = {}
        self._in_cleanup = False
        self._deferred: List[int] = []

    def __enter__(self) -> RollbackManager:
        if threading.current_thread() is threading.main_thread():
            for signum in self.SIGNALS:
                self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)
        return self.manager

    def _handle_signal(self, signum, frame):
        if self._in_cleanup:
            logger.warning(f"Signal {signum} received during rollback, deferring", extra=_EXTRA)
            self._deferred.append(signum)
            return
        raise RestoreInterrupted(signum)

    def _restore_handlers(self):
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers = {}

    def _drop_deferred(self):
        """Log signals held back while cleaning up after a failed restore."""
        if self._deferred:
            names = ", ".join(signal.Signals(signum).name for signum in self._deferred)
            logger.warning(
                f"Not re-delivering {names} received during rollback; the restore has already failed",
                extra=_EXTRA
            )
        self._deferred = []

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._in_cleanup = True
        try:
            outcome = self.manager.cleanup()
        except BaseException:
            self._drop_deferred()
            raise
        finally:
            self._restore_handlers()
            self._in_cleanup = False

        if exc_val is not None:
            self._drop_deferred()
            service_details = {}
            if self.manager.service_restore_failed:
                service_details = {"service": self.manager.service_name, "service_restored": False}

            if outcome == RollbackState.ROLLBACK_FAILED:
                raise RollbackError(
                    f"Rollback failed after restore error: {exc_val}",
                    details={
                        "rollback": outcome.value,
                        "failed_artifacts": "; ".join(self.manager.failures),
                        "snapshot_kept_at": str(self.manager.rollback_dir),
                        **service_details,
                    }
                ) from exc_val
            if isinstance(exc_val, SbxError):
                exc_val.details["rollback"] = outcome.value
                exc_val.details.update(service_details)
                if outcome == RollbackState.ROLLED_BACK:
                    exc_val.details["rolled_back"] = True
            return False

        deferred, self._deferred = self._deferred, []
        for signum in deferred:
            signal.raise_signal(signum)
        return False
