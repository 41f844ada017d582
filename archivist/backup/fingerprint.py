"""
Change detection for backup archives.

A fingerprint is an MD5 digest of the archive bytes. It only answers "did the
directory change since the last upload", it is not an integrity check.
"""

import hashlib
from dataclasses import dataclass
from typing import BinaryIO, Optional

from .compression import ArchiveError


CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class Fingerprint:
    digest: str
    size: int


def compute_fingerprint(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Fingerprint:
    """
    Digest a stream incrementally, counting bytes as it goes.

    Args:
        stream: Readable binary stream, consumed to EOF
        chunk_size: Bytes per read

    Returns:
        Fingerprint with hex digest and total size

    Raises:
        ArchiveError: If reading the stream fails
    """
    digest = hashlib.md5()
    size = 0

    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            digest.update(chunk)
            size += len(chunk)
    except OSError as e:
        raise ArchiveError(f"Failed to read archive stream: {e}")

    return Fingerprint(digest=digest.hexdigest(), size=size)


def has_changed(fingerprint: Fingerprint, previous: Optional[str]) -> bool:
    """
    Decide whether an upload is needed.

    No previous fingerprint (empty catalog, or an archive uploaded without
    one) always means upload.
    """
    if previous is None:
        return True
    return fingerprint.digest != previous
