"""
Compensating cleanup for a backup run.

Removes the snapshot, published image and exported archive a run created.
Every sub-step treats an already-absent artifact as success, logs its own
outcome and never raises, so cleanup can run after any stage failure, after
an interrupt and any number of times in a row.
"""

import logging
from typing import Callable, Dict, Any, Iterable, Optional

from lxdbackup.models import BackupJob, CleanupSet
from .runtime import LXDRuntime, RuntimeClientError


logger = logging.getLogger(__name__)


class CleanupManager:
    """
    Runs the cleanup sub-steps for a job.

    Sub-steps are attempted independently; a failure in one does not stop
    the others.
    """

    def __init__(self, runtime: LXDRuntime, log: Optional[Callable[..., None]] = None):
        """
        Initialize cleanup manager.

        Args:
            runtime: Container runtime client
            log: Callable(message, level) receiving cleanup log lines;
                defaults to this module's logger
        """
        self.runtime = runtime
        self._log = log or (lambda message, level=logging.INFO: logger.log(level, message))

    def cleanup_snapshot(self, job: BackupJob) -> bool:
        """Delete the run's snapshot if the container still has it."""
        target = f"{job.container_name}/{job.snapshot_label}"

        try:
            if not self.runtime.container_has_snapshot(job.container_name, job.snapshot_label):
                self._log(f"Cleanup: Snapshot {target} not present, nothing to delete", logging.DEBUG)
                return True
            self.runtime.delete_snapshot(job.container_name, job.snapshot_label)
        except RuntimeClientError as e:
            self._log(f"Cleanup: Could not delete snapshot {target} - {e}", logging.WARNING)
            return False

        self._log(f"Cleanup: Successfully deleted snapshot {target}")
        return True

    def cleanup_image(self, job: BackupJob) -> bool:
        """Delete the published image if the runtime still lists it."""
        alias = job.artifact_name

        try:
            if not self.runtime.image_exists(alias):
                self._log(f"Cleanup: Image {alias} not present, nothing to delete", logging.DEBUG)
                return True
            self.runtime.delete_image(alias)
        except RuntimeClientError as e:
            self._log(f"Cleanup: Could not delete image {alias} - {e}", logging.WARNING)
            return False

        self._log(f"Cleanup: Successfully deleted image {alias}")
        return True

    def cleanup_archive(self, job: BackupJob) -> bool:
        """Delete the exported archive from the work directory if present."""
        archive_path = job.archive_path

        try:
            archive_path.unlink()
        except FileNotFoundError:
            self._log(f"Cleanup: Archive {archive_path} not present, nothing to delete", logging.DEBUG)
            return True
        except OSError as e:
            self._log(f"Cleanup: Could not delete exported archive {archive_path} - {e}", logging.WARNING)
            return False

        self._log(f"Cleanup: Successfully deleted exported archive {archive_path}")
        return True

    def run(self, job: BackupJob, artifacts: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Run cleanup sub-steps.

        Args:
            job: Job whose artifacts should be removed
            artifacts: Artifact kinds to consider (a CleanupSet or any
                iterable of CleanupSet kinds); all kinds if None

        Returns:
            Dict with summary of cleanup operations:
            {
                'attempted': List[str],
                'failed': List[str]
            }
        """
        steps = {
            CleanupSet.SNAPSHOT: self.cleanup_snapshot,
            CleanupSet.IMAGE: self.cleanup_image,
            CleanupSet.ARCHIVE: self.cleanup_archive,
        }

        if artifacts is None:
            selected = list(steps)
        else:
            wanted = set(artifacts)
            selected = [kind for kind in steps if kind in wanted]

        summary = {
            'attempted': [],
            'failed': []
        }

        for kind in selected:
            summary['attempted'].append(kind)
            if not steps[kind](job):
                summary['failed'].append(kind)

        return summary
