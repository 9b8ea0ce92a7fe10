"""
Error taxonomy shared by the staging cache, the compositor and the HTTP layer.

Expected conditions (bad input, full cache, unknown id) are reported as
values carrying an ErrorKind. Only composition failures are raised.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable reason a request could not be served."""
    INVALID_FORMAT = "invalid_format"
    INVALID_ORIENTATION = "invalid_orientation"
    MISSING_DIMENSIONS = "missing_dimensions"
    DECODE_FAILURE = "decode_failure"
    COMPOSITION_FAILURE = "composition_failure"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NOT_FOUND_OR_EXPIRED = "not_found_or_expired"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    ErrorKind.INVALID_FORMAT: 400,
    ErrorKind.INVALID_ORIENTATION: 400,
    ErrorKind.MISSING_DIMENSIONS: 400,
    ErrorKind.DECODE_FAILURE: 400,
    ErrorKind.COMPOSITION_FAILURE: 500,
    # "try again later" as opposed to "re-upload"
    ErrorKind.CAPACITY_EXCEEDED: 503,
    ErrorKind.NOT_FOUND_OR_EXPIRED: 404,
}


class CompositionError(Exception):
    """Raised when decoding, resizing or encoding fails during composition."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.COMPOSITION_FAILURE):
        super().__init__(message)
        self.kind = kind
