"""
Backup executor - orchestrates the complete container backup workflow.

Workflow:
1. Preflight: tools on PATH, container exists, job derived, work dir ready
2. Snapshot the container
3. Publish the snapshot as an image
4. Export the image to a local archive
5. Ensure the remote directory exists
6. Upload (and verify) the archive
7. Cleanup snapshot, image and archive (also on every failure)
8. Upload the run report (if configured)

No stage is retried. A failure at any stage stops the pipeline and runs the
same cleanup, restricted to the artifacts the run actually created.
"""

import os
import re
import signal
import shutil
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

from lxdbackup.models import BackupJob, BackupResult, CleanupSet, PipelineStage
from .cleanup import CleanupManager
from .errors import BackupInterrupted, PreflightError, VerificationError
from .naming import NAMING_FORMATS, generate_timestamp, is_valid_timestamp, remote_directory
from .runtime import LXDRuntime, RuntimeClientError
from .storage import StorageError, create_storage


logger = logging.getLogger(__name__)

_CONTAINER_NAME_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9-]*$')

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


@contextmanager
def _signal_handlers(handler, signals):
    previous = {}
    try:
        for signum in signals:
            previous[signum] = signal.signal(signum, handler)
    except ValueError:
        logger.debug("Not in main thread, signal handlers not installed")

    try:
        yield
    finally:
        for signum, previous_handler in previous.items():
            signal.signal(signum, previous_handler)


@contextmanager
def interrupt_on_signals(signals=INTERRUPT_SIGNALS):
    """
    Turn termination signals into BackupInterrupted for the enclosed block.

    Previous handlers are restored on exit. Outside the main thread signal
    handlers cannot be installed and the block runs unchanged.
    """
    def _handler(signum, frame):
        raise BackupInterrupted(signum)

    with _signal_handlers(_handler, signals):
        yield


@contextmanager
def defer_signals(signals=INTERRUPT_SIGNALS):
    """
    Hold termination signals until the enclosed block has finished.

    Yields the list of signal numbers received in the meantime.
    """
    received = []

    def _handler(signum, frame):
        received.append(signum)

    with _signal_handlers(_handler, signals):
        yield received


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one container.
    """

    def __init__(self, container_name: str, settings, runtime=None, storage=None,
                 now: Optional[datetime] = None):
        """
        Initialize backup executor.

        Args:
            container_name: LXD container to back up
            settings: Config instance
            runtime: Container runtime client (default: LXDRuntime from settings)
            storage: Storage handler (default: created from settings in preflight)
            now: Time to derive the run timestamp from (default: current time)
        """
        self.container_name = container_name
        self.settings = settings
        self.runtime = runtime or LXDRuntime(
            binary=settings.LXC_BINARY,
            bridges=settings.NETWORK_BRIDGES,
            lease_dir=settings.LEASE_DIR
        )
        self.storage = storage
        self.now = now

        self.job = None
        self.result = None
        self.stage = PipelineStage.PREFLIGHT
        self.cleanup_set = CleanupSet()
        self.archive_path = None
        self.remote_dir = None
        self.remote_dir_ready = False
        self.logs = []

    def execute(self) -> BackupResult:
        """
        Execute the backup.

        Returns:
            BackupResult with status 'success', 'failed' or 'not_started'
        """
        self._log(f"Starting backup of container {self.container_name}")

        try:
            self._preflight()
        except PreflightError as e:
            self._log(f"Preflight: {e}", logging.ERROR)
            self._log("Backup did not start, nothing to clean up")
            return BackupResult(
                job=self.job,
                status='not_started',
                error_message=str(e),
                logs=list(self.logs)
            )

        self.result = BackupResult(job=self.job)

        # Signals arriving once the workflow has unwound wait for cleanup
        with defer_signals() as deferred:
            try:
                with interrupt_on_signals():
                    self._execute_workflow()

                self.result.status = 'success'

            except (BackupInterrupted, KeyboardInterrupt) as e:
                self.result.status = 'failed'
                self.result.error_message = str(e) or 'Interrupted'
                self._log(f"Interrupted after stage {self.stage.label}: {self.result.error_message}",
                          logging.ERROR)
                self._log("Unclean exit", logging.ERROR)

            except Exception as e:
                self.result.status = 'failed'
                self.result.error_message = str(e)
                self._log(f"Backup failed after stage {self.stage.label}: {e}", logging.ERROR)

            finally:
                self.result.stage = self.stage
                self._cleanup()

        for signum in deferred:
            self._log(f"Cleanup: Signal {signum} received during cleanup, finished cleanup first",
                      logging.WARNING)

        self._upload_report()
        self.result.logs = list(self.logs)

        return self.result

    def _preflight(self):
        """
        Validate inputs and derive the job before anything is created.

        Raises:
            PreflightError: If the run cannot start
        """
        if not self.container_name or not _CONTAINER_NAME_RE.match(self.container_name):
            raise PreflightError(f"Invalid container name: {self.container_name!r}")

        if self.storage is None:
            try:
                self.storage = create_storage(self.settings)
            except (StorageError, ValueError) as e:
                raise PreflightError(f"Storage not usable: {e}")

        for binary in self.runtime.required_binaries + self.storage.required_binaries:
            if shutil.which(binary) is None:
                raise PreflightError(f"{binary} command not found in path... cannot proceed")

        try:
            exists = self.runtime.container_exists(self.container_name)
        except RuntimeClientError as e:
            raise PreflightError(f"Could not query container {self.container_name}: {e}")
        if not exists:
            raise PreflightError(f"Container {self.container_name} NOT found")
        self._log(f"Info: Container {self.container_name} found, continuing..")

        self.job = self._derive_job()
        self._log(f"Info: Backup name {self.job.artifact_name}")

        work_dir = self.job.work_directory
        if not work_dir.is_dir():
            try:
                work_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PreflightError(f"Could not create backup directory {work_dir}: {e}")
            self._log(f"Backup directory: {work_dir} created for temporary backup storage")

        self.remote_dir = remote_directory(self.settings.TARGET_DIR, self.container_name)

    def _derive_job(self) -> BackupJob:
        if self.settings.NAMING_FORMAT not in NAMING_FORMATS:
            raise PreflightError(f"Invalid naming format: {self.settings.NAMING_FORMAT!r}")

        timestamp = generate_timestamp(self.now)
        if not is_valid_timestamp(timestamp):
            raise PreflightError(f"Could not determine backup date: {timestamp!r}")

        mac_address = ip_address = None
        if self.settings.NAMING_FORMAT == 'v1':
            identity = self.runtime.query_network_identity(self.container_name)
            if identity is None or identity.is_empty():
                self._log(f"Info: Network identity of {self.container_name} not found, "
                          f"continuing without it", logging.WARNING)
            else:
                mac_address = identity.mac_address
                ip_address = identity.ip_address
                self._log(f"Info: Container {self.container_name} with MAC {mac_address} "
                          f"is currently on IP address {ip_address}")

        return BackupJob(
            container_name=self.container_name,
            timestamp=timestamp,
            work_directory=Path(self.settings.WORK_DIR),
            mac_address=mac_address,
            ip_address=ip_address,
            naming_format=self.settings.NAMING_FORMAT
        )

    @contextmanager
    def _stage(self, stage: PipelineStage, failure_message: str, artifact: Optional[str] = None):
        """
        Run one pipeline transition.

        On success the stage is recorded and its artifact joins the cleanup
        set. On an ordinary failure the artifact is not added, since the call
        that would have created it failed. On an interrupt the artifact is
        added, since the call may have completed before the signal landed.
        """
        try:
            yield
        except Exception as e:
            self._log(f"{failure_message} - {e}", logging.ERROR)
            raise
        except BaseException:
            if artifact:
                self.cleanup_set.add(artifact)
            raise

        if artifact:
            self.cleanup_set.add(artifact)
        self.stage = stage

    def _execute_workflow(self):
        """Execute the main backup workflow steps."""
        job = self.job
        container = job.container_name
        label = job.snapshot_label
        alias = job.artifact_name

        # Step 1: Snapshot
        with self._stage(PipelineStage.SNAPSHOT_CREATED,
                         f"Snapshot: Could not create snapshot {label} on container {container}",
                         CleanupSet.SNAPSHOT):
            self.runtime.snapshot(container, label)
        self._log(f"Snapshot: Successfully created snapshot {label} on container {container}")

        # Step 2: Publish
        with self._stage(PipelineStage.IMAGE_PUBLISHED,
                         f"Publish: Could not create image from {container}/{label} to {alias}",
                         CleanupSet.IMAGE):
            self.runtime.publish(container, label, alias)
        self._log(f"Publish: Successfully published an image of {container}/{label} to {alias}")

        # Step 3: Export
        # A failed export can leave a partial archive behind
        self.cleanup_set.add(CleanupSet.ARCHIVE)
        with self._stage(PipelineStage.IMAGE_EXPORTED,
                         f"Image: Could not export image {alias} to {job.archive_path}",
                         CleanupSet.ARCHIVE):
            self.archive_path = self.runtime.export_image(alias, job.work_directory / alias)
        file_size = os.path.getsize(self.archive_path)
        self.result.file_size_bytes = file_size
        self._log(f"Image: Successfully exported an image of {alias} to {self.archive_path} "
                  f"({file_size / 1024 / 1024:.2f} MB)")

        # Step 4: Remote directory
        target = self.storage.describe(self.remote_dir)
        with self._stage(PipelineStage.REMOTE_DIR_READY,
                         f"Target directory: Could not create the {target} directory"):
            self.storage.ensure_remote_directory(self.remote_dir)
        self.remote_dir_ready = True
        self._log(f"Target directory: Successfully created the {target} directory")

        # Step 5: Upload
        with self._stage(PipelineStage.UPLOADED,
                         f"Upload: Could not upload {self.archive_path.name} to {target}"):
            remote_path = self.storage.upload(str(self.archive_path), self.remote_dir)
            if self.settings.VERIFY_UPLOAD:
                self._verify_upload(remote_path, file_size)
        self.result.remote_path = remote_path
        self._log(f"Upload: Successfully uploaded {self.archive_path.name} to "
                  f"{self.storage.describe(remote_path)}")
        self._log(f"Upload: Backup {label} for {container} uploaded successfully")

    def _verify_upload(self, remote_path: str, local_size: int):
        """
        Compare the remote file size with the local archive.

        Raises:
            VerificationError: If the remote file is missing or differs in size
        """
        remote_size = self.storage.remote_size(remote_path)

        if remote_size is None:
            raise VerificationError(
                f"Uploaded file {self.storage.describe(remote_path)} not found on remote"
            )
        if remote_size != local_size:
            raise VerificationError(
                f"Size mismatch for {self.storage.describe(remote_path)}: "
                f"local {local_size} bytes, remote {remote_size} bytes"
            )

        self._log(f"Verify: Remote size matches local size ({local_size} bytes)")

    def _cleanup(self):
        """Remove the artifacts this run created."""
        if not self.cleanup_set:
            self._log("Cleanup: Nothing was created, nothing to clean up", logging.DEBUG)
            return

        manager = CleanupManager(self.runtime, log=self._log)
        summary = manager.run(self.job, self.cleanup_set)

        if summary['failed']:
            self._log(f"Cleanup: Finished with errors for {', '.join(summary['failed'])}",
                      logging.WARNING)
        else:
            self._log(f"Cleanup: Finished ({', '.join(summary['attempted'])})")

    def _upload_report(self):
        """
        Upload the run log next to the archive and delete it locally.

        Failures are logged only; they do not change the run status.
        """
        if not self.settings.REPORT_ENABLED or not self.remote_dir_ready:
            return

        report_path = self.job.report_path
        self._log(f"Report: Uploading run report {report_path.name}")

        try:
            report_path.write_text('\n'.join(self.logs) + '\n')
            remote_path = self.storage.upload(str(report_path), self.remote_dir)
            self._log(f"Report: Successfully uploaded report to {self.storage.describe(remote_path)}")
        except (StorageError, OSError) as e:
            self._log(f"Report: Could not upload run report - {e}", logging.WARNING)
        finally:
            try:
                report_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                self._log(f"Report: Could not delete local report {report_path} - {e}",
                          logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Log a message and keep a timestamped copy for the run report.

        Args:
            message: Log message
            level: logging level
        """
        logger.log(level, message)

        if level >= logging.INFO:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
            self.logs.append(f"[{timestamp}] {logging.getLevelName(level)} {message}")


def run_backup(container_name: str, settings, runtime=None, storage=None) -> BackupResult:
    """
    Run a backup of one container.

    Args:
        container_name: LXD container to back up
        settings: Config instance
        runtime: Optional runtime client override
        storage: Optional storage handler override

    Returns:
        BackupResult of the run
    """
    executor = BackupExecutor(container_name, settings, runtime=runtime, storage=storage)
    return executor.execute()
