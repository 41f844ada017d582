"""
Backup orchestrator - sequences one backup cycle.

Workflow:
1. Snapshot the catalog and fetch the newest archive's fingerprint
2. Produce the archive stream and fingerprint it
3. Skip the upload if nothing changed, otherwise produce a second stream and
   upload it with the fingerprint attached
4. Enforce the retention policy (scheduled runs only)

States: idle -> archiving -> fingerprinting -> skipped | uploading
        -> cleaning_up -> done, with failed reachable from archiving,
        fingerprinting and uploading.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional

from archivist.settings import Settings
from .catalog import Catalog, format_archive_name, load_catalog
from .compression import archive_size, produce_archive
from .fingerprint import Fingerprint, compute_fingerprint, has_changed
from .retention import RetentionManager
from .storage import StorageError, create_storage


logger = logging.getLogger(__name__)

# At most one cycle per process
_cycle_lock = threading.Lock()


class BackupState(str, Enum):
    IDLE = 'idle'
    ARCHIVING = 'archiving'
    FINGERPRINTING = 'fingerprinting'
    SKIPPED = 'skipped'
    UPLOADING = 'uploading'
    CLEANING_UP = 'cleaning_up'
    DONE = 'done'
    FAILED = 'failed'


@dataclass
class BackupResult:
    """Outcome of one backup cycle."""
    one_off: bool = False
    state: BackupState = BackupState.IDLE
    state_history: List[BackupState] = field(default_factory=lambda: [BackupState.IDLE])
    archive_name: Optional[str] = None
    fingerprint: Optional[str] = None
    size: Optional[int] = None
    uploaded: bool = False
    skipped: bool = False
    purged: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == BackupState.DONE


def archive_name_for(now: datetime, one_off: bool = False) -> str:
    """
    Name of the archive a run started at now should upload.

    Scheduled runs are named for the next whole hour (now + 5 minutes,
    truncated) so a run that starts just before the hour aligns with hourly
    retention tiers. One-off runs use the current minute.
    """
    if one_off:
        timestamp = now.replace(second=0, microsecond=0)
    else:
        timestamp = (now + timedelta(minutes=5)).replace(minute=0, second=0, microsecond=0)
    return format_archive_name(timestamp)


class BackupOrchestrator:
    """
    Runs backup cycles for one directory and bucket.
    """

    def __init__(self, settings: Settings, storage, produce: Callable = produce_archive):
        """
        Initialize backup orchestrator.

        Args:
            settings: Resolved settings
            storage: Storage client (S3Storage or compatible)
            produce: Archive codec, called once per pass with the backup dir
        """
        self.settings = settings
        self.storage = storage
        self.produce = produce
        self.result = None

    def execute(self, one_off: bool = False, now: Optional[datetime] = None) -> BackupResult:
        """
        Run one backup cycle.

        Failures are recorded on the result rather than raised.

        Args:
            one_off: Manual run - exact timestamp and no retention cleanup
            now: Current instant (default: now in the configured timezone)

        Returns:
            BackupResult describing the cycle
        """
        if now is None:
            now = datetime.now(self.settings.timezone)

        self.result = BackupResult(one_off=one_off, started_at=datetime.now(timezone.utc))

        if not _cycle_lock.acquire(blocking=False):
            self.result.error_message = "Another backup cycle is in progress"
            self._log(self.result.error_message, level=logging.WARNING)
            self._transition(BackupState.SKIPPED)
            self.result.completed_at = datetime.now(timezone.utc)
            return self.result

        try:
            self._log(f"Starting {'one-off' if one_off else 'scheduled'} backup of {self.settings.backup_dir}")
            self._execute_workflow(one_off, now)
            self._transition(BackupState.DONE)
            self._log("Backup cycle completed successfully")

        except Exception as e:
            self.result.error_message = str(e)
            self._transition(BackupState.FAILED)
            self._log(f"Backup failed: {e}", level=logging.ERROR)

        finally:
            self.result.completed_at = datetime.now(timezone.utc)
            _cycle_lock.release()

        return self.result

    def _execute_workflow(self, one_off: bool, now: datetime):
        """Execute the main backup workflow steps."""
        # Step 1: Snapshot catalog and start archiving
        self._transition(BackupState.ARCHIVING)
        catalog = load_catalog(self.storage, self.settings.timezone)
        previous = self._latest_fingerprint(catalog)
        self._log(f"Catalog holds {len(catalog)} archives")

        # Step 2: Fingerprint the directory
        fingerprint = self._fingerprint()
        self.result.fingerprint = fingerprint.digest
        self.result.size = fingerprint.size
        self._log(f"Fingerprint {fingerprint.digest} ({fingerprint.size / 1024 / 1024:.2f} MB)")

        # Step 3: Upload, unless nothing changed
        if not has_changed(fingerprint, previous):
            self.result.skipped = True
            self._transition(BackupState.SKIPPED)
            self._log(f"No changes since {catalog.latest.name}, skipping upload")
        else:
            self.result.archive_name = archive_name_for(now, one_off)
            self._upload(self.result.archive_name, fingerprint)
            self.result.uploaded = True

        # Step 4: Retention
        if one_off:
            self._log("One-off backup, skipping retention cleanup")
        else:
            self._clean(now)

    def _latest_fingerprint(self, catalog: Catalog) -> Optional[str]:
        """
        Fingerprint recorded on the newest archive.

        Returns:
            Digest, or None if the catalog is empty or the archive has none
        """
        latest = catalog.latest
        if latest is None:
            self._log("Catalog is empty, upload required")
            return None

        if latest.fingerprint is not None:
            return latest.fingerprint

        return self.storage.get_metadata(latest.name).get('fingerprint')

    def _fingerprint(self) -> Fingerprint:
        stream = self.produce(self.settings.backup_dir)
        try:
            self._transition(BackupState.FINGERPRINTING)
            return compute_fingerprint(stream)
        finally:
            stream.close()

    def _upload(self, name: str, fingerprint: Fingerprint):
        """
        Produce a fresh archive stream and upload it.

        Raises:
            ArchiveError: If the second pass over the directory fails
            StorageError: If the upload fails
        """
        stream = self.produce(self.settings.backup_dir)
        try:
            self._transition(BackupState.UPLOADING)
            self._log(f"Uploading {name} ({archive_size(stream) / 1024 / 1024:.2f} MB)")
            key = self.storage.upload_stream(stream, name, {'fingerprint': fingerprint.digest})
            self._log(f"Uploaded to S3: {key}")
        finally:
            stream.close()

    def _clean(self, now: datetime):
        """Enforce retention against a freshly listed catalog."""
        self._transition(BackupState.CLEANING_UP)
        manager = RetentionManager(self.settings, self.storage)

        try:
            summary = manager.clean(now)
        except StorageError as e:
            self.result.errors.append(str(e))
            self._log(f"Retention cleanup failed: {e}", level=logging.ERROR)
            return

        self.result.purged = summary['purged']
        self.result.errors.extend(summary['errors'])
        self.result.logs.extend(summary['logs'])

    def _transition(self, state: BackupState):
        self.result.state = state
        self.result.state_history.append(state)
        logger.debug(f"Backup state: {state.value}")

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def execute_backup(settings: Settings, one_off: bool = False, storage=None) -> BackupResult:
    """
    Run one backup cycle with the storage described by settings.

    Args:
        settings: Resolved settings
        one_off: Manual run (see BackupOrchestrator.execute)
        storage: Storage client override

    Returns:
        BackupResult describing the cycle
    """
    if storage is None:
        try:
            storage = create_storage(settings)
        except StorageError as e:
            result = BackupResult(one_off=one_off, state=BackupState.FAILED, error_message=str(e))
            result.state_history.append(BackupState.FAILED)
            logger.error(f"Backup failed: {e}")
            return result

    orchestrator = BackupOrchestrator(settings, storage)
    return orchestrator.execute(one_off=one_off)
