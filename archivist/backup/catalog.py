"""
Archive catalog - an ordered, point-in-time view of archives in storage.

Archive names encode their timestamp as 'YYYY-MM-DD HH:MM' followed by a fixed
suffix, so lexicographic order on names is chronological order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Iterable, Iterator, List, Mapping, Optional, Any


logger = logging.getLogger(__name__)

ARCHIVE_TIME_FORMAT = '%Y-%m-%d %H:%M'
ARCHIVE_SUFFIX = '.tar.gz'


@dataclass(frozen=True)
class Archive:
    """One stored backup."""
    name: str
    timestamp: datetime
    size: int = 0
    fingerprint: Optional[str] = None

    @property
    def display_name(self) -> str:
        return display_name(self.name)


def format_archive_name(timestamp: datetime) -> str:
    """Build the object name for an archive taken at timestamp."""
    return f"{timestamp.strftime(ARCHIVE_TIME_FORMAT)}{ARCHIVE_SUFFIX}"


def parse_archive_name(name: str, tz: tzinfo) -> Optional[datetime]:
    """
    Extract the timestamp encoded in an archive name.

    Args:
        name: Archive name, e.g. '2024-01-30 13:00.tar.gz'
        tz: Timezone the timestamp was written in

    Returns:
        Timezone-aware datetime, or None if name is not an archive name
    """
    if not name.endswith(ARCHIVE_SUFFIX):
        return None

    try:
        parsed = datetime.strptime(name[:-len(ARCHIVE_SUFFIX)], ARCHIVE_TIME_FORMAT)
    except ValueError:
        return None

    return parsed.replace(tzinfo=tz)


def display_name(name: str) -> str:
    """Archive name with the suffix stripped."""
    if name.endswith(ARCHIVE_SUFFIX):
        return name[:-len(ARCHIVE_SUFFIX)]
    return name


class Catalog:
    """
    Ascending, immutable sequence of archives.

    The catalog is never mutated; without() returns a new catalog.
    """

    def __init__(self, archives: Iterable[Archive] = ()):
        self._archives = tuple(sorted(archives, key=lambda a: a.name))

    @classmethod
    def from_objects(cls, objects: Iterable[Mapping[str, Any]], tz: tzinfo, prefix: str = '') -> 'Catalog':
        """
        Build a catalog from a storage listing.

        Args:
            objects: Dicts with 'Key', 'Size' and optionally 'Metadata'
            tz: Timezone archive names are written in
            prefix: Key prefix to strip before parsing names

        Returns:
            Catalog sorted by name; objects that are not archives are skipped
        """
        archives = []
        for obj in objects:
            key = obj['Key']
            name = key[len(prefix):] if prefix and key.startswith(prefix) else key
            timestamp = parse_archive_name(name, tz)
            if timestamp is None:
                logger.warning(f"Ignoring object that is not an archive: {key}")
                continue

            metadata = obj.get('Metadata') or {}
            archives.append(Archive(
                name=name,
                timestamp=timestamp,
                size=obj.get('Size', 0),
                fingerprint=metadata.get('fingerprint'),
            ))

        return cls(archives)

    @property
    def archives(self) -> List[Archive]:
        return list(self._archives)

    @property
    def latest(self) -> Optional[Archive]:
        return self._archives[-1] if self._archives else None

    def without(self, purge: Iterable[Archive]) -> 'Catalog':
        """Return a new catalog with the given archives removed."""
        names = {a.name for a in purge}
        return Catalog(a for a in self._archives if a.name not in names)

    def __iter__(self) -> Iterator[Archive]:
        return iter(self._archives)

    def __len__(self) -> int:
        return len(self._archives)

    def __bool__(self) -> bool:
        return bool(self._archives)

    def __getitem__(self, index):
        return self._archives[index]

    def __repr__(self):
        return f'<Catalog archives={len(self._archives)}>'


def load_catalog(storage, tz: tzinfo) -> Catalog:
    """
    List storage and build a fresh catalog.

    Raises:
        StorageError: If listing fails
    """
    return Catalog.from_objects(storage.list_objects(), tz, prefix=storage.prefix)
