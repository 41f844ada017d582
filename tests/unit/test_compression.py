"""
Unit tests for the archive codec (archivist/backup/compression.py).
"""

import io
import os
import tarfile

import pytest

from archivist.backup.compression import (
    ArchiveError,
    archive_size,
    produce_archive
)


class TestProduceArchive:
    """Test produce_archive."""

    def test_produces_readable_tar_gz(self, source_dir):
        """Test the stream is a gzip'd tar of the directory contents."""
        stream = produce_archive(str(source_dir))
        try:
            with tarfile.open(fileobj=stream, mode='r:gz') as tar:
                members = sorted(m.name for m in tar.getmembers() if m.isfile())
        finally:
            stream.close()

        assert members == ['./file1.txt', './file2.log', './nested/file3.txt']

    def test_stream_positioned_at_start(self, source_dir):
        """Test the returned stream starts at the gzip magic bytes."""
        stream = produce_archive(str(source_dir))
        try:
            assert stream.read(2) == b'\x1f\x8b'
        finally:
            stream.close()

    def test_archive_is_deterministic(self, source_dir):
        """Test two passes over an unchanged directory yield identical bytes."""
        first = produce_archive(str(source_dir))
        second = produce_archive(str(source_dir))
        try:
            assert first.read() == second.read()
        finally:
            first.close()
            second.close()

    def test_owner_names_dropped(self, source_dir):
        """Test only numeric ownership is recorded."""
        stream = produce_archive(str(source_dir))
        try:
            with tarfile.open(fileobj=stream, mode='r:gz') as tar:
                assert all(m.uname == '' and m.gname == '' for m in tar.getmembers())
        finally:
            stream.close()

    def test_missing_directory(self, tmp_path):
        """Test a missing directory raises ArchiveError."""
        with pytest.raises(ArchiveError, match="does not exist"):
            produce_archive(str(tmp_path / 'missing'))

    def test_unreadable_file(self, source_dir):
        """Test a read failure inside the directory raises ArchiveError."""
        if hasattr(os, 'geteuid') and os.geteuid() == 0:
            pytest.skip("root can read files regardless of mode")

        secret = source_dir / 'secret.txt'
        secret.write_text('hidden')
        secret.chmod(0)
        try:
            with pytest.raises(ArchiveError, match="Failed to create archive"):
                produce_archive(str(source_dir))
        finally:
            secret.chmod(0o644)

    def test_spool_in_temp_dir(self, source_dir, tmp_path):
        """Test the archive can be spooled to a chosen directory."""
        spool_dir = tmp_path / 'spool'
        spool_dir.mkdir()

        stream = produce_archive(str(source_dir), temp_dir=str(spool_dir))
        try:
            assert archive_size(stream) > 0
        finally:
            stream.close()


class TestArchiveSize:
    """Test archive_size."""

    def test_size_keeps_position(self):
        """Test the stream position is restored after measuring."""
        stream = io.BytesIO(b'x' * 100)
        stream.seek(10)

        assert archive_size(stream) == 100
        assert stream.tell() == 10
