import os
import sys
import logging
from logging.handlers import RotatingFileHandler, SysLogHandler


__version__ = '1.0.0'


def configure_logging(settings, container_name=None):
    """
    Configure logging for a backup run.

    Lines go to stdout and, when enabled, to syslog and a rotating log file.
    Syslog lines are prefixed 'lxdbackup: {container} - '.
    """
    log_level = getattr(logging, settings.LOG_LEVEL, logging.INFO)

    handlers = []

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    # Syslog handler
    syslog_error = None
    if settings.SYSLOG_ENABLED:
        prefix = 'lxdbackup: '
        if container_name:
            prefix += container_name.replace('%', '%%') + ' - '
        try:
            syslog_handler = SysLogHandler(address=settings.SYSLOG_ADDRESS)
        except OSError as e:
            syslog_error = e
        else:
            syslog_handler.setLevel(logging.INFO)
            syslog_handler.setFormatter(logging.Formatter(prefix + '%(message)s'))
            handlers.append(syslog_handler)

    # File handler
    if settings.LOG_FILE:
        os.makedirs(os.path.dirname(os.path.abspath(settings.LOG_FILE)), exist_ok=True)
        file_handler = RotatingFileHandler(
            settings.LOG_FILE,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logger = logging.getLogger('lxdbackup')
    if syslog_error is not None:
        logger.warning(f"Syslog unavailable at {settings.SYSLOG_ADDRESS}: {syslog_error}")
    logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
