"""
Backup module for lxdbackup.

This module handles the core backup functionality including:
- Artifact naming
- LXD runtime access (snapshot, publish, export)
- Remote storage (rclone and S3)
- Execution orchestration
- Compensating cleanup
"""

from .executor import BackupExecutor, run_backup
from .runtime import LXDRuntime, RuntimeClientError
from .storage import RcloneStorage, S3Storage, StorageError, create_storage
from .cleanup import CleanupManager
from .errors import BackupError, BackupInterrupted, PreflightError, VerificationError
from .naming import build_artifact_name, generate_timestamp

__all__ = [
    'BackupExecutor',
    'run_backup',
    'LXDRuntime',
    'RuntimeClientError',
    'RcloneStorage',
    'S3Storage',
    'StorageError',
    'create_storage',
    'CleanupManager',
    'BackupError',
    'BackupInterrupted',
    'PreflightError',
    'VerificationError',
    'build_artifact_name',
    'generate_timestamp'
]
