import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default):
    value = os.environ.get(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_FILE = os.environ.get('LXDBACKUP_LOG_FILE') or None
    SYSLOG_ENABLED = _env_bool('LXDBACKUP_SYSLOG', True)
    SYSLOG_ADDRESS = os.environ.get('LXDBACKUP_SYSLOG_ADDRESS') or '/dev/log'

    # Local staging area for exported images
    WORK_DIR = os.environ.get('LXDBACKUP_WORKDIR') or '/tmp/lxdbackup'

    # Container runtime
    LXC_BINARY = os.environ.get('LXC_BINARY') or 'lxc'
    NETWORK_BRIDGES = _env_list('LXDBACKUP_BRIDGES', ['lxdbr0'])
    LEASE_DIR = os.environ.get('LXDBACKUP_LEASE_DIR') or '/var/lib/lxd/networks'

    # Artifact naming ('v1' embeds MAC and IP, 'v2' does not)
    NAMING_FORMAT = os.environ.get('LXDBACKUP_NAMING') or 'v2'

    # Remote storage
    STORAGE_BACKEND = os.environ.get('LXDBACKUP_STORAGE') or 'rclone'
    TARGET_DIR = os.environ.get('LXDBACKUP_TARGET_DIR') or os.environ.get('RCLONE_TARGET_DIR') or 'lxdbackups'

    RCLONE_BINARY = os.environ.get('RCLONE_BINARY') or 'rclone'
    RCLONE_TARGET = os.environ.get('RCLONE_TARGET') or 'backuphosting'
    RCLONE_OPTIONS = os.environ.get('RCLONE_OPTIONS') or ''

    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_REGION = os.environ.get('S3_REGION') or 'us-east-1'
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL') or None
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')

    # Compare remote size with local size after upload
    VERIFY_UPLOAD = _env_bool('LXDBACKUP_VERIFY_UPLOAD', True)

    # Upload a per-run log next to the archive
    REPORT_ENABLED = _env_bool('LXDBACKUP_REPORT', False)


class DevelopmentConfig(Config):
    """Development configuration"""
    LOG_LEVEL = 'DEBUG'
    SYSLOG_ENABLED = False

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    WORK_DIR = os.path.join(DATA_DIR, 'work')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'lxdbackup.log')


class ProductionConfig(Config):
    """Production configuration"""


class TestingConfig(Config):
    """Test configuration"""
    LOG_LEVEL = 'DEBUG'
    LOG_FILE = None
    SYSLOG_ENABLED = False
    STORAGE_BACKEND = 'rclone'
    RCLONE_TARGET = 'testremote'
    RCLONE_OPTIONS = ''
    TARGET_DIR = 'lxdbackups'
    NAMING_FORMAT = 'v2'
    VERIFY_UPLOAD = True
    REPORT_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def load_config(config_name=None, **overrides):
    """
    Build a configuration object, applying non-None overrides.

    Args:
        config_name: Key into ``config``; defaults to $LXDBACKUP_ENV or 'production'
        **overrides: Attribute values that take precedence (e.g. from the CLI)

    Raises:
        KeyError: If config_name is unknown
        AttributeError: If an override names an unknown setting
    """
    if config_name is None:
        config_name = os.environ.get('LXDBACKUP_ENV', 'production')

    settings = config[config_name]()

    for key, value in overrides.items():
        if value is None:
            continue
        if not hasattr(settings, key):
            raise AttributeError(f"Unknown setting: {key}")
        setattr(settings, key, value)

    return settings
