"""Error types raised by promdump operations."""


class PromdumpError(Exception):
    """Base class for promdump errors."""
    def __init__(self, message, code='InternalError'):
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigurationError(PromdumpError):
    """Invalid time window or missing target parameters."""
    def __init__(self, message):
        super().__init__(message, "ConfigurationError")


class CatalogError(PromdumpError):
    """The data directory can't be opened as a TSDB."""
    def __init__(self, message):
        super().__init__(message, "CatalogError")


class PermissionDenied(PromdumpError):
    """The access review denied the exec subresource."""
    def __init__(self, reason=None):
        message = "no permissions to create exec subresource"
        if reason:
            message = f"{message}. reason: {reason}"
        super().__init__(message, "PermissionDenied")
        self.reason = reason


class ChecksumMismatch(PromdumpError):
    """Downloaded artifact doesn't match its published checksum."""
    def __init__(self, expected, actual):
        super().__init__(
            f"mismatch checksum: expected:{expected}, actual:{actual}",
            "ChecksumMismatch"
        )
        self.expected = expected
        self.actual = actual


class TransportError(PromdumpError):
    """Network or exec stream failure."""
    def __init__(self, message, code="TransportError"):
        super().__init__(message, code)


class RemoteTimeout(TransportError):
    """A network or exec call exceeded its deadline."""
    def __init__(self, message):
        super().__init__(message, "RemoteTimeout")


class RemoteCommandError(TransportError):
    """The remote command exited with a non-zero status."""
    def __init__(self, argv, exit_code, stderr=""):
        message = f"command {' '.join(argv)!r} exited with status {exit_code}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message, "RemoteCommandError")
        self.argv = list(argv)
        self.exit_code = exit_code


class ArchiveError(PromdumpError):
    """The tar or gzip writer failed; the archive is unusable."""
    def __init__(self, message):
        super().__init__(message, "ArchiveError")


class PartialWalkError(PromdumpError):
    """A single file or directory couldn't be archived."""
    def __init__(self, path, reason):
        super().__init__(f"failed to archive {path}: {reason}", "PartialWalkError")
        self.path = path
        self.reason = reason
