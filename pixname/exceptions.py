"""Exception types raised across pixname."""

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failed call to the vision service."""

    SERVER = "server"
    RATE_LIMITED = "rate_limited"
    CLIENT = "client"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"
    PARSE = "parse"
    UNEXPECTED = "unexpected"


class PixnameError(Exception):
    """Base class for all pixname errors."""


class VisionServiceError(PixnameError):
    """A call to the vision service failed."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNEXPECTED, status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class RetriesExhaustedError(VisionServiceError):
    """Every allowed attempt failed with a retryable error."""

    def __init__(self, last_error: VisionServiceError, attempts: int) -> None:
        super().__init__(
            f"Failed after {attempts} attempts. Last error: {last_error}",
            kind=last_error.kind,
            status_code=last_error.status_code,
        )
        self.last_error = last_error
        self.attempts = attempts


class ResponseParseError(VisionServiceError):
    """The model's reply could not be turned into an analysis record."""

    def __init__(self, message: str) -> None:
        super().__init__(message, kind=ErrorKind.PARSE)


class ServiceUnavailableError(PixnameError):
    """The vision endpoint is unreachable or has no model loaded."""


class ImagePreparationError(PixnameError):
    """An image could not be decoded or downscaled before sending."""


class MetadataError(PixnameError):
    """Embedding metadata into an image failed."""


class UnsupportedFormatError(MetadataError):
    """No metadata strategy exists for this file type."""


class CorruptContainerError(MetadataError):
    """The image container structure is invalid."""


class MetadataVerificationError(MetadataError):
    """Metadata was written but could not be read back."""


def truncate_message(message: str, limit: int) -> str:
    """Shorten a message for inline display, keeping the start."""
    message = " ".join(message.split())
    if len(message) <= limit:
        return message
    return message[: max(limit - 3, 0)] + "..."
