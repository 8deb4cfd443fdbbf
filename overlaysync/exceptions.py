"""Custom Exceptions for the OverlaySync application."""

class OverlaySyncError(Exception):
    """Base class for exceptions in this module."""
    pass

class ConfigurationError(OverlaySyncError):
    """Exception raised for errors in configuration loading."""
    pass

class FileSystemError(OverlaySyncError):
    """Exception raised for file system related errors (permissions, not found etc)."""
    pass

class ExtractionError(OverlaySyncError):
    """Exception raised when a source document cannot be read at all."""
    pass

class AudioDecodeError(OverlaySyncError):
    """Exception raised for errors while decoding or probing audio."""
    pass

class UnknownUnitError(OverlaySyncError):
    """Exception raised when a unit id does not belong to the document."""
    pass

class DuplicateUnitError(OverlaySyncError):
    """Exception raised when two units in a document share an id."""
    pass

class UserInputError(OverlaySyncError):
    """Exception raised when an editing action is not possible in the current state."""
    pass

class AlignmentError(OverlaySyncError):
    """Exception raised when automatic alignment fails.

    The timing store is never modified by a failed alignment, so callers may
    simply retry when ``retryable`` is set.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable

class AlignmentInProgressError(AlignmentError):
    """Exception raised when an alignment for the same target is already running."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)

class PersistenceError(OverlaySyncError):
    """Exception raised for errors while saving or loading sync blocks."""
    pass
