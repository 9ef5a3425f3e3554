"""
Custom exception hierarchy for the media indexer.

Fatal conditions (a required tool can't be run) abort a run before any work
starts; everything else is raised per item and handled at the stage boundary.
"""


class MediaIndexerError(Exception):
    """Base exception for all media indexer errors."""
    pass


class ToolUnavailableError(MediaIndexerError):
    """Raised at startup when a required external tool isn't usable."""
    pass


class SignatureError(MediaIndexerError):
    """Raised when a file's content signature can't be computed."""
    pass


class AliasError(MediaIndexerError):
    """Raised when an alias can't be resolved or recorded."""
    pass


class MetadataExtractionError(MediaIndexerError):
    """Raised when metadata cannot be extracted from a file."""
    pass


class LocationLookupError(MediaIndexerError):
    """Raised when a placename can't be resolved for a location."""
    pass


class LocationConnectionError(LocationLookupError):
    """The reverse geocoder couldn't be reached."""
    pass


class LocationServerError(LocationLookupError):
    """The reverse geocoder answered with a non-success status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


class LocationResponseError(LocationLookupError):
    """The reverse geocoder answered with a body we can't use."""
    pass


class ThumbnailError(MediaIndexerError):
    """Raised when a thumbnail or video frame can't be produced."""
    pass


class IndexStoreError(MediaIndexerError):
    """Raised when document store operations fail."""
    pass
