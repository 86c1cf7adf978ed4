"""Project-specific exception types."""

from __future__ import annotations


class NFSBridgeError(RuntimeError):
    """Base error for domain-level nfsbridge failures.

    Carries enough context (share name, path, stage) for a caller to
    remediate by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        share_name: str = '',
        path: str = '',
        stage: str = '',
    ):
        self.share_name = share_name
        self.path = path
        self.stage = stage
        super().__init__(message)


class InvalidMountSpecError(NFSBridgeError):
    """Raised when a mount invocation does not end in an absolute path."""


class PathAlreadyInUseError(NFSBridgeError):
    """Raised when an explicit mount path already exists."""


class AlreadyMountedError(NFSBridgeError):
    """Raised when the chosen mount path is already an active mount point."""


class MountFailedError(NFSBridgeError):
    """Raised when the mount invocation exits non-zero."""


class ExportFailedError(NFSBridgeError):
    """Raised when exporting a fresh mount fails; the mount is rolled back."""


class UnmountFailedError(NFSBridgeError):
    """Raised when umount fails; the share config is restored first."""


class ReloadFailedError(NFSBridgeError):
    """Raised when the SMB service does not reload.

    The config file may hold changes that are applied but not active.
    """


class ConfigWriteError(NFSBridgeError):
    """Raised when the share config cannot be read or persisted."""


class DuplicateShareError(NFSBridgeError):
    """Raised when adding a share whose header already exists."""


class QuotaQueryError(NFSBridgeError):
    """Raised for malformed quota query arguments."""
