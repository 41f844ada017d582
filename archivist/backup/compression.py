"""
Archive codec - turns a directory into a tar.gz byte stream.

The output is deterministic for identical directory contents:
- entries are added in sorted order
- the gzip header carries no timestamp or file name
- owner names are dropped, only numeric ids are kept

The archive is spooled to an anonymous temporary file on disk, so memory use
stays bounded regardless of directory size. Every call produces a fresh,
independent stream.
"""

import gzip
import os
import tarfile
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


def _normalize_member(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
    """Strip metadata that varies between otherwise identical runs."""
    tarinfo.uname = ''
    tarinfo.gname = ''
    tarinfo.mtime = int(tarinfo.mtime)
    return tarinfo


def produce_archive(directory: str, temp_dir: Optional[str] = None) -> BinaryIO:
    """
    Create a tar.gz archive of a directory.

    Args:
        directory: Directory to archive
        temp_dir: Where to spool the archive (default: system temp dir)

    Returns:
        Readable binary file object positioned at the start of the archive.
        The caller owns it and must close it; closing removes the spool file.

    Raises:
        ArchiveError: If the directory cannot be read
    """
    source = Path(directory)
    if not source.is_dir():
        raise ArchiveError(f"Backup directory does not exist: {directory}")

    spool = tempfile.TemporaryFile(prefix='archivist_', suffix='.tar.gz', dir=temp_dir)

    try:
        with gzip.GzipFile(filename='', mode='wb', fileobj=spool, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode='w', format=tarfile.GNU_FORMAT) as tar:
                tar.add(str(source), arcname='.', recursive=True, filter=_normalize_member)
        spool.seek(0)
        return spool

    except Exception as e:
        spool.close()
        raise ArchiveError(f"Failed to create archive of {directory}: {e}")


def archive_size(fileobj: BinaryIO) -> int:
    """
    Size of a seekable archive stream in bytes, without moving its position.
    """
    position = fileobj.tell()
    try:
        fileobj.seek(0, os.SEEK_END)
        return fileobj.tell()
    finally:
        fileobj.seek(position)
