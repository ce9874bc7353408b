"""
Error taxonomy for teardown runs.

Only ConfigError, AuthError, BackendFatalError and critical StageFailure stop
a run; everything else is reported as a warning by the component that
raised it.
"""

from typing import Optional


class TeardownError(Exception):
    """Base class for all teardown errors."""
    exit_code = 1

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class ConfigError(TeardownError):
    """Missing or malformed environment configuration."""
    exit_code = 2


class AuthError(TeardownError):
    """No usable cloud credentials, or the wrong account."""
    exit_code = 3


class BackendError(TeardownError):
    """Terraform state backend could not be prepared."""
    exit_code = 4


class BackendTransientError(BackendError):
    """The known S3 state checksum mismatch; safe to continue past."""


class BackendFatalError(BackendError):
    """Any other init or workspace failure."""


class StageFailure(TeardownError):
    """A teardown stage did not complete."""

    def __init__(self, label: str, critical: bool, message: str, hint: Optional[str] = None):
        super().__init__(message, hint)
        self.label = label
        self.critical = critical


class KubeError(TeardownError):
    """Kubernetes API could not be reached or refused a call."""


class OrphanSweepFailure(TeardownError):
    """A single orphaned resource could not be deleted."""

    def __init__(self, kind: str, resource_id: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.resource_id = resource_id
