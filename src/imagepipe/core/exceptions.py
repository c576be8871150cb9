"""Custom exceptions for the image pipeline."""


class PipelineError(Exception):
    """Base exception for the image pipeline."""
    pass


class ValidationError(PipelineError):
    """Exception raised when an object is not acceptable input (extension, key)."""
    pass


class TransientError(PipelineError):
    """Exception raised when a backing service is temporarily unavailable."""
    pass


class PermanentError(PipelineError):
    """Exception raised when a message exhausted its delivery attempts."""
    pass


class ObjectNotFoundError(PipelineError):
    """Exception raised when an object is missing from the object store."""
    pass


class DecodeError(PipelineError):
    """Base exception for notification decoding failures."""
    pass


class EnvelopeError(DecodeError):
    """Exception raised when the transport envelope cannot be decoded."""
    pass


class PayloadError(DecodeError):
    """Exception raised when the wrapped notification payload is malformed."""
    pass


class DeliveryError(PipelineError):
    """Exception raised when a direct subscriber reports failed messages."""
    pass


class MailerError(PipelineError):
    """Exception raised when an outbound notification cannot be delivered."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
