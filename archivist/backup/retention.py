"""
Retention policy enforcement for backups.

Two strategies decide which archives to purge:
- keep-last: keep the newest N archives
- tiered: time-machine style decay, thinning older archives to one per
  hour/day/week/month depending on how far back they are

Both are pure functions of (catalog, config, now). RetentionManager does the
I/O: it lists storage, runs the strategy and deletes the purge set.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from functools import reduce
from typing import Any, Dict, List, Optional, Tuple

from archivist.settings import RetentionConfig, RetentionPlan, Settings
from .catalog import Archive, Catalog, load_catalog, ARCHIVE_TIME_FORMAT
from .storage import StorageError


logger = logging.getLogger(__name__)


class RetentionError(Exception):
    """Raised when an archive in the purge set could not be deleted."""

    def __init__(self, archive: Archive, cause: Exception):
        super().__init__(f"Failed to delete {archive.name}: {cause}")
        self.archive = archive
        self.cause = cause


def truncate_to_minute(dt: datetime) -> datetime:
    return dt.replace(second=0, microsecond=0)


def period_start(dt: datetime, frequency: str) -> datetime:
    """Start of the hour/day/week/month containing dt. Weeks start on Sunday."""
    if frequency == 'hourly':
        return dt.replace(minute=0, second=0, microsecond=0)
    elif frequency == 'daily':
        return dt.replace(hour=0, minute=0, second=0, microsecond=0)
    elif frequency == 'weekly':
        start_of_day = dt.replace(hour=0, minute=0, second=0, microsecond=0)
        return start_of_day - timedelta(days=(start_of_day.weekday() + 1) % 7)
    elif frequency == 'monthly':
        return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    else:
        raise ValueError(f"Unknown frequency: {frequency}")


def is_aligned(dt: datetime, frequency: str) -> bool:
    """True if dt sits exactly on a period boundary for frequency."""
    return period_start(dt, frequency) == dt


def keep_last(catalog: Catalog, n: int) -> List[Archive]:
    """
    Purge everything except the newest n archives.

    Returns:
        Purge set in catalog order
    """
    if n <= 0:
        return catalog.archives
    return list(catalog[:-n])


def _window_start(window_end: datetime, plan: RetentionPlan) -> Optional[datetime]:
    if plan.is_forever:
        return None
    return truncate_to_minute(window_end - plan.keep)


def _in_window(archive: Archive, window_start: Optional[datetime], window_end: datetime) -> bool:
    # Left-open, right-closed, so a boundary archive belongs to exactly one tier
    if window_start is None:
        return archive.timestamp < window_end
    return window_start < archive.timestamp <= window_end


def _apply_plan(
    state: Tuple[Catalog, Optional[datetime], List[Archive]],
    plan: RetentionPlan
) -> Tuple[Catalog, Optional[datetime], List[Archive]]:
    """One step of the tier fold: (population, window_end, purged) -> next state."""
    population, window_end, purged = state

    # A previous 'forever' tier already reached the beginning of time
    if window_end is None:
        return state

    window_start = _window_start(window_end, plan)

    tier_purge = [
        archive for archive in population
        if _in_window(archive, window_start, window_end)
        and not is_aligned(archive.timestamp, plan.frequency)
    ]

    logger.info(
        f"Purging archives between "
        f"{'the start of time' if window_start is None else window_start.strftime(ARCHIVE_TIME_FORMAT)} "
        f"and {window_end.strftime(ARCHIVE_TIME_FORMAT)} that are not {plan.frequency}: "
        f"{len(tier_purge)} found"
    )

    return population.without(tier_purge), window_start, purged + tier_purge


def tiered(catalog: Catalog, plans, now: datetime) -> List[Archive]:
    """
    Time-machine style decay.

    Each plan covers the window that starts where the previous plan's window
    ended and reaches back by its keep duration. Inside a window, archives
    not aligned to the plan's frequency are purged. Archives older than every
    window are left alone unless the last plan keeps 'forever'.

    Args:
        catalog: Ascending catalog
        plans: Ordered retention plans, most recent window first
        now: Current instant (timezone-aware, same zone as the catalog)

    Returns:
        Purge set in catalog order
    """
    initial = (catalog, truncate_to_minute(now), [])
    _, _, purged = reduce(_apply_plan, plans, initial)
    return sorted(purged, key=lambda a: a.name)


def find_archives_to_purge(catalog: Catalog, retention: RetentionConfig, now: datetime) -> List[Archive]:
    """Run the configured strategy against a catalog."""
    if retention.strategy == 'keep-last':
        purge = keep_last(catalog, retention.keep_last)
    elif retention.strategy == 'tiered':
        purge = tiered(catalog, retention.plans, now)
    else:
        raise ValueError(f"Unknown cleaning strategy: {retention.strategy}")

    logger.info(f"Purging a total of {len(purge)} of {len(catalog)} archives")
    return purge


class RetentionManager:
    """
    Enforces the retention policy against the backup bucket.

    The catalog is listed fresh on every run; deletions are issued
    concurrently and a failed deletion never stops the others.
    """

    def __init__(self, settings: Settings, storage):
        """
        Initialize retention manager.

        Args:
            settings: Resolved settings
            storage: Storage client (S3Storage or compatible)
        """
        self.settings = settings
        self.storage = storage
        self.logs = []

    def clean(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Delete every archive the retention strategy selects.

        Args:
            now: Current instant (default: now in the configured timezone)

        Returns:
            Dict with summary of cleanup:
            {
                'catalog_size': int,
                'purged': List[str],
                'errors': List[str],
                'logs': List[str]
            }

        Raises:
            StorageError: If the catalog cannot be listed
        """
        if now is None:
            now = datetime.now(self.settings.timezone)

        self._log(f"Enforcing {self.settings.retention.strategy} retention policy")

        catalog = load_catalog(self.storage, self.settings.timezone)
        purge = find_archives_to_purge(catalog, self.settings.retention, now)

        summary = {
            'catalog_size': len(catalog),
            'purged': [],
            'errors': []
        }

        for error in self.delete_archives(purge, summary['purged']):
            summary['errors'].append(str(error))

        self._log(
            f"Retention enforcement complete. "
            f"Archives: {summary['catalog_size']}, "
            f"Deleted: {len(summary['purged'])}, "
            f"Errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def delete_archives(self, purge: List[Archive], deleted: List[str]) -> List[RetentionError]:
        """
        Delete archives concurrently.

        Args:
            purge: Archives to delete
            deleted: List that receives the names of deleted archives

        Returns:
            One RetentionError per archive that could not be deleted
        """
        errors = []
        if not purge:
            return errors

        with ThreadPoolExecutor(max_workers=self.settings.delete_workers) as pool:
            futures = {pool.submit(self.storage.delete, archive.name): archive for archive in purge}

            for future in as_completed(futures):
                archive = futures[future]
                try:
                    future.result()
                    deleted.append(archive.name)
                    self._log(f"Deleted archive: {archive.name}")
                except StorageError as e:
                    error = RetentionError(archive, e)
                    errors.append(error)
                    self._log(str(error), level=logging.ERROR)

        deleted.sort()
        return errors

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def enforce_retention_policy(settings: Settings, storage) -> Dict[str, Any]:
    """
    Enforce the retention policy once.

    Returns:
        Summary dict from RetentionManager.clean()
    """
    manager = RetentionManager(settings, storage)
    return manager.clean()
