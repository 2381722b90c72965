"""
Run-scoped value types for a container backup.

Nothing here is persisted: a BackupJob is derived once at process start and
passed explicitly to every pipeline stage.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import List, Optional


class PipelineStage(IntEnum):
    """Pipeline stages in the order they are reached."""
    PREFLIGHT = 0
    SNAPSHOT_CREATED = 1
    IMAGE_PUBLISHED = 2
    IMAGE_EXPORTED = 3
    REMOTE_DIR_READY = 4
    UPLOADED = 5

    @property
    def label(self) -> str:
        return self.name.replace('_', ' ').title()


@dataclass(frozen=True)
class NetworkIdentity:
    """MAC and IP address a container currently holds on a bridge."""
    mac_address: Optional[str] = None
    ip_address: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.mac_address and not self.ip_address


@dataclass(frozen=True)
class BackupJob:
    """
    Everything one backup run needs to know about its target.

    The timestamp is captured once so that the snapshot label, image alias,
    archive name and cleanup calls all agree.
    """
    container_name: str
    timestamp: str
    work_directory: Path
    mac_address: Optional[str] = None
    ip_address: Optional[str] = None
    naming_format: str = 'v2'

    @property
    def snapshot_label(self) -> str:
        return self.timestamp

    @property
    def artifact_name(self) -> str:
        from .backup.naming import build_artifact_name
        return build_artifact_name(
            self.container_name,
            self.timestamp,
            mac_address=self.mac_address,
            ip_address=self.ip_address,
            naming_format=self.naming_format
        )

    @property
    def archive_path(self) -> Path:
        from .backup.naming import archive_filename
        return self.work_directory / archive_filename(self.artifact_name)

    @property
    def report_path(self) -> Path:
        from .backup.naming import report_filename
        return self.work_directory / report_filename(self.artifact_name)


class CleanupSet:
    """
    Artifacts created by the current run that cleanup may remove.

    Membership only grows; removal is decided by cleanup re-checking that the
    artifact still exists.
    """

    SNAPSHOT = 'snapshot'
    IMAGE = 'image'
    ARCHIVE = 'archive'

    _ORDER = (SNAPSHOT, IMAGE, ARCHIVE)

    def __init__(self):
        self._members = set()

    def add(self, artifact: str):
        if artifact not in self._ORDER:
            raise ValueError(f"Unknown artifact kind: {artifact}")
        self._members.add(artifact)

    def __contains__(self, artifact) -> bool:
        return artifact in self._members

    def __iter__(self):
        return (a for a in self._ORDER if a in self._members)

    def __len__(self) -> int:
        return len(self._members)

    def __repr__(self) -> str:
        return f"CleanupSet({list(self)})"


@dataclass
class BackupResult:
    """Outcome of one executor run."""
    job: Optional[BackupJob] = None
    status: str = 'running'
    stage: PipelineStage = PipelineStage.PREFLIGHT
    error_message: Optional[str] = None
    remote_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 'success'

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1
