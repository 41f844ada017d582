import os


class Config:
    """Base configuration"""

    # Source and destination
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or '/data/'
    BACKUP_BUCKET = os.environ.get('BACKUP_BUCKET')
    BACKUP_PREFIX = os.environ.get('BACKUP_PREFIX', '')

    # S3
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL')

    # Retention
    TIMEZONE = os.environ.get('TIMEZONE') or 'UTC'
    CLEANING_STRATEGY = os.environ.get('CLEANING_STRATEGY') or 'keep-last'
    KEEP_LAST = os.environ.get('KEEP_LAST') or 20
    BACKUP_FREQUENCY = os.environ.get('BACKUP_FREQUENCY') or 'hourly'

    # JSON list, e.g. [{"frequency": "hourly", "keep": {"days": 1}},
    #                  {"frequency": "monthly", "keep": "forever"}]
    RETENTION_PLANS = os.environ.get('RETENTION_PLANS')

    DELETE_WORKERS = os.environ.get('DELETE_WORKERS') or 4

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False

    BACKUP_BUCKET = 'test-bucket'
    BACKUP_PREFIX = ''
    AWS_REGION = 'us-east-1'
    S3_ENDPOINT_URL = None
    TIMEZONE = 'UTC'
    CLEANING_STRATEGY = 'keep-last'
    KEEP_LAST = 20
    BACKUP_FREQUENCY = 'hourly'
    RETENTION_PLANS = None
    LOG_DIR = ''


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
