"""Exception hierarchy for backup runs."""


class BackupError(Exception):
    """Base exception for backup operations."""
    pass


class PreflightError(BackupError):
    """Raised when a run cannot start: missing tool, missing container, bad input."""
    pass


class VerificationError(BackupError):
    """Raised when an uploaded archive does not match the local copy."""
    pass


class BackupInterrupted(BaseException):
    """
    Raised from a signal handler to unwind the pipeline.

    Derives from BaseException so that stage-level ``except Exception`` blocks
    do not swallow it.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")
