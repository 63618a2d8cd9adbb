"""
Exception hierarchy shared by the record store, backends and resolvers.
"""

from __future__ import annotations


class AllPacError(Exception):
    """
    Base exception for allpac errors.

    Attributes:
        message: Human-readable error message
        package: Package the error relates to (if any)
        source: Backend source id the error relates to (if any)
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        package: str | None = None,
        source: str | None = None,
        remediation: str | None = None,
    ):
        self.message = message
        self.package = package
        self.source = source
        self.remediation = remediation
        super().__init__(message)


class NotFoundError(AllPacError):
    """Package absent from the record store or from a backend's catalog."""


class BackendError(AllPacError):
    """Subprocess or network failure while calling a backend."""


class InstallError(BackendError):
    """Backend failed to install a package."""


class UninstallError(BackendError):
    """Backend failed to remove a package."""


class PersistenceError(AllPacError):
    """Package list could not be read or written."""


class AmbiguousSelectionError(AllPacError):
    """Several backends offer an exact match and no valid choice was made."""
