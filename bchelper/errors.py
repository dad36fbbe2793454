"""
Error kinds raised by the container helper operations.
"""


class BcHelperError(Exception):
    """Base class for all container helper errors."""


class InvalidArgument(BcHelperError, ValueError):
    """Raised for malformed input such as an artifact URL with too few segments."""


class UnsupportedVersion(BcHelperError, ValueError):
    """Raised when an artifact version is too old for the requested operation."""


class SourceNotFound(BcHelperError):
    """Raised when the Base Application source archive cannot be located."""


class BackupNotFound(BcHelperError):
    """Raised when an expected .bak file is missing from the backup folder."""


class ExternalToolFailure(BcHelperError, RuntimeError):
    """Raised when a download, extraction, docker or database call fails."""


ERROR_KINDS = {
    cls.__name__: cls
    for cls in (
        InvalidArgument,
        UnsupportedVersion,
        SourceNotFound,
        BackupNotFound,
        ExternalToolFailure,
    )
}


def error_from_code(code: str, message: str) -> BcHelperError:
    """Rebuild an error reported by another process from its type name."""
    return ERROR_KINDS.get(code, ExternalToolFailure)(message)
