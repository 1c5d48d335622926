"""Installer error taxonomy and exception types.

Every failure the installer reports carries an ErrorKind. The kind decides
the process exit code, so handlers never pick exit codes themselves.
"""

import errno
from enum import Enum

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_FILESYSTEM = 2
EXIT_DATA = 3
EXIT_ABORTED = 4


class ErrorKind(str, Enum):
    """Distinguishable failure reasons."""

    # User errors
    USAGE = "Usage"
    MISSING_COMMAND = "MissingCommand"
    MULTIPLE_SOURCES_UNSUPPORTED = "MultipleSourcesUnsupported"
    AMBIGUOUS_SOURCE = "AmbiguousSource"

    # Filesystem errors
    FILE_ALREADY_EXISTS = "FileAlreadyExists"
    ACCESS_DENIED = "AccessDenied"
    DIRECTORY_NOT_EMPTY = "DirectoryNotEmpty"
    NO_SUCH_FILE = "NoSuchFile"
    IO_ERROR = "IOError"

    # Data errors
    CORRUPTED_CATALOG = "CorruptedCatalog"
    CORRUPTED_CATALOG_FILE = "CorruptedCatalogFile"
    UNSUPPORTED_GRAAL_VERSION = "UnsupportedGraalVersion"
    INVALID_METADATA = "InvalidMetadata"
    COMPONENT_NOT_FOUND = "ComponentNotFound"
    UNSUPPORTED_COMPONENT = "UnsupportedComponent"
    CONFLICTING_COMPONENT = "ConflictingComponent"
    COMPONENT_ALREADY_INSTALLED = "ComponentAlreadyInstalled"
    HOOK_FAILED = "HookFailed"
    INTERNAL = "InternalError"

    # Network errors
    ERROR_DOWNLOAD_CATALOG_PROXY = "ErrorDownloadCatalogProxy"
    DOWNLOAD_FAILED = "DownloadFailed"

    # Abort
    ABORTED = "Aborted"

    @property
    def exit_code(self) -> int:
        """Process exit code for this kind."""
        if self in _USER_KINDS:
            return EXIT_USAGE
        if self in _FILESYSTEM_KINDS:
            return EXIT_FILESYSTEM
        if self is ErrorKind.ABORTED:
            return EXIT_ABORTED
        return EXIT_DATA


_USER_KINDS = frozenset(
    {
        ErrorKind.USAGE,
        ErrorKind.MISSING_COMMAND,
        ErrorKind.MULTIPLE_SOURCES_UNSUPPORTED,
        ErrorKind.AMBIGUOUS_SOURCE,
    }
)

_FILESYSTEM_KINDS = frozenset(
    {
        ErrorKind.FILE_ALREADY_EXISTS,
        ErrorKind.ACCESS_DENIED,
        ErrorKind.DIRECTORY_NOT_EMPTY,
        ErrorKind.NO_SUCH_FILE,
        ErrorKind.IO_ERROR,
    }
)


class ComponentError(Exception):
    """Base exception for installer operations."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, context: dict | None = None, kind: ErrorKind | None = None):
        """Initialize with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dict with additional context (paths, ids, etc.)
            kind: Overrides the class default kind
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        if kind is not None:
            self.kind = kind

    @property
    def exit_code(self) -> int:
        return self.kind.exit_code


class UsageError(ComponentError):
    """Bad command line usage."""

    kind = ErrorKind.USAGE


class MultipleSourcesUnsupportedError(UsageError):
    """More than one installation source was selected."""

    kind = ErrorKind.MULTIPLE_SOURCES_UNSUPPORTED


class AmbiguousSourceError(UsageError):
    """A request matches several components or several sources."""

    kind = ErrorKind.AMBIGUOUS_SOURCE


class ComponentNotFoundError(ComponentError):
    """Component is neither in the catalog nor installed."""

    kind = ErrorKind.COMPONENT_NOT_FOUND


class MetadataError(ComponentError):
    """Invalid or missing metadata (descriptor, registry record, release file)."""

    kind = ErrorKind.INVALID_METADATA


class CatalogParseError(MetadataError):
    """Catalog document is structurally invalid or misses required fields."""

    kind = ErrorKind.CORRUPTED_CATALOG


class CorruptedCatalogFileError(MetadataError):
    """Downloaded catalog failed parsing or its integrity check."""

    kind = ErrorKind.CORRUPTED_CATALOG_FILE


class UnsupportedGraalVersionError(ComponentError):
    """Catalog requires a newer base installation."""

    kind = ErrorKind.UNSUPPORTED_GRAAL_VERSION


class CatalogDownloadError(ComponentError):
    """Catalog could not be fetched (connection, proxy, timeout, HTTP status)."""

    kind = ErrorKind.ERROR_DOWNLOAD_CATALOG_PROXY


class DownloadError(ComponentError):
    """Component archive could not be fetched."""

    kind = ErrorKind.DOWNLOAD_FAILED


class UnsupportedComponentError(ComponentError):
    """Component requires a capability the base installation lacks."""

    kind = ErrorKind.UNSUPPORTED_COMPONENT

    def __init__(self, component_id: str, capability: str, required: str, available: str | None):
        super().__init__(
            f"Component {component_id} requires {capability}={required}, "
            f"but the installation provides {capability}={available if available is not None else '<none>'}",
            context={
                "component": component_id,
                "capability": capability,
                "required": required,
                "available": available,
            },
        )
        self.capability = capability
        self.required = required
        self.available = available


class ConflictingComponentError(ComponentError):
    """Target file is owned by a different installed component."""

    kind = ErrorKind.CONFLICTING_COMPONENT


class ComponentAlreadyInstalledError(ComponentError):
    """Component is installed and replacement was not requested."""

    kind = ErrorKind.COMPONENT_ALREADY_INSTALLED


class HookError(ComponentError):
    """External hook command failed."""

    kind = ErrorKind.HOOK_FAILED


class UserAbortError(ComponentError):
    """Operation cancelled by the user."""

    kind = ErrorKind.ABORTED


class InstallerIOError(ComponentError):
    """Filesystem failure, classified by the underlying OSError."""

    def __init__(self, message: str, cause: OSError, context: dict | None = None):
        super().__init__(message, context=context, kind=classify_os_error(cause))
        self.cause = cause


def classify_os_error(exc: OSError) -> ErrorKind:
    """Map an OSError to a filesystem error kind."""
    if isinstance(exc, FileExistsError):
        return ErrorKind.FILE_ALREADY_EXISTS
    if isinstance(exc, PermissionError):
        return ErrorKind.ACCESS_DENIED
    if isinstance(exc, FileNotFoundError):
        return ErrorKind.NO_SUCH_FILE
    if exc.errno == errno.ENOTEMPTY:
        return ErrorKind.DIRECTORY_NOT_EMPTY
    return ErrorKind.IO_ERROR
