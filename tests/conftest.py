"""
Shared pytest fixtures for Archivist tests.

This module provides fixtures for:
- Flask app and CLI runner with test configuration
- Resolved settings for keep-last and tiered strategies
- Mocked S3 bucket (moto) and storage client
- Source directories to back up
- Catalog builders
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
import boto3
from moto import mock_aws

from archivist import create_app
from archivist.backup.catalog import Archive, Catalog, parse_archive_name
from archivist.backup.storage import S3Storage
from archivist.settings import load_settings


UTC = ZoneInfo('UTC')

TIERED_PLANS = [
    {'frequency': 'hourly', 'keep': {'days': 1}},
    {'frequency': 'daily', 'keep': {'weeks': 1, 'days': 1}},
    {'frequency': 'weekly', 'keep': {'months': 2, 'weeks': 1}},
    {'frequency': 'monthly', 'keep': 'forever'},
]


def make_archive(label: str, tz=UTC, fingerprint=None, size=0) -> Archive:
    """Build an Archive from a 'YYYY-MM-DD HH:MM' label."""
    name = f"{label}.tar.gz"
    return Archive(name=name, timestamp=parse_archive_name(name, tz), size=size, fingerprint=fingerprint)


def make_catalog(*labels, tz=UTC) -> Catalog:
    return Catalog(make_archive(label, tz=tz) for label in labels)


def at(label: str, tz=UTC) -> datetime:
    """Timezone-aware datetime from a 'YYYY-MM-DD HH:MM' label."""
    return datetime.strptime(label, '%Y-%m-%d %H:%M').replace(tzinfo=tz)


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never touches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3(aws_credentials):
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def storage(mock_s3):
    """S3Storage bound to the mocked bucket."""
    return S3Storage(bucket_name='test-bucket', region='us-east-1')


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a directory to back up.

    Creates:
    - file1.txt
    - file2.log
    - nested/file3.txt
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'file1.txt').write_text('Test content 1')
    (source / 'file2.log').write_text('Test log content')

    nested = source / 'nested'
    nested.mkdir()
    (nested / 'file3.txt').write_text('Nested test content')

    return source


@pytest.fixture
def settings(source_dir):
    """Keep-last settings (N=2) backing up source_dir to the test bucket."""
    return load_settings({
        'BACKUP_DIR': str(source_dir),
        'BACKUP_BUCKET': 'test-bucket',
        'TIMEZONE': 'UTC',
        'CLEANING_STRATEGY': 'keep-last',
        'KEEP_LAST': 2,
        'BACKUP_FREQUENCY': 'hourly',
    })


@pytest.fixture
def tiered_settings(source_dir):
    """Tiered settings with the default four-tier decay schedule."""
    return load_settings({
        'BACKUP_DIR': str(source_dir),
        'BACKUP_BUCKET': 'test-bucket',
        'TIMEZONE': 'UTC',
        'CLEANING_STRATEGY': 'tiered',
        'RETENTION_PLANS': TIERED_PLANS,
    })


@pytest.fixture
def app(source_dir):
    """Flask app with test configuration."""
    app = create_app('testing', BACKUP_DIR=str(source_dir), KEEP_LAST=2)
    app.config.update({'TESTING': True})
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def put_archive(mock_s3):
    """Put an archive object directly into the mocked bucket."""
    def _put(label, body=b'data', fingerprint=None):
        metadata = {'fingerprint': fingerprint} if fingerprint else {}
        mock_s3.Bucket('test-bucket').put_object(Key=f"{label}.tar.gz", Body=body, Metadata=metadata)
    return _put


@pytest.fixture
def bucket_names(mock_s3):
    """Return the sorted object keys currently in the bucket."""
    def _names():
        return sorted(obj.key for obj in mock_s3.Bucket('test-bucket').objects.all())
    return _names
