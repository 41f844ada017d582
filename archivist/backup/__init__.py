"""
Backup module for Archivist.

This module handles the core backup functionality including:
- Archive catalog (listing and ordering archives in storage)
- Compression (deterministic tar.gz of the backup directory)
- Change detection (skip uploads when nothing changed)
- Storage (S3)
- Retention policy enforcement (keep-last and tiered)
- Execution orchestration
"""

from .catalog import Archive, Catalog, load_catalog
from .compression import produce_archive, ArchiveError
from .fingerprint import compute_fingerprint, has_changed
from .storage import S3Storage, StorageError, create_storage
from .retention import RetentionManager, RetentionError, find_archives_to_purge
from .executor import BackupOrchestrator, BackupResult, BackupState, execute_backup

__all__ = [
    'Archive',
    'Catalog',
    'load_catalog',
    'produce_archive',
    'ArchiveError',
    'compute_fingerprint',
    'has_changed',
    'S3Storage',
    'StorageError',
    'create_storage',
    'RetentionManager',
    'RetentionError',
    'find_archives_to_purge',
    'BackupOrchestrator',
    'BackupResult',
    'BackupState',
    'execute_backup'
]
