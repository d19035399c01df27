"""
Pipeline Exceptions

Error taxonomy for the webhook relay. Ingress errors map to HTTP responses;
sink errors stay on the consumer side and only prevent acknowledgment.
"""


class RelayError(Exception):
    """Base class for all webhook relay errors."""

    status_code: int = 500


class DecodeError(RelayError):
    """The request body's transport encoding could not be decoded."""

    status_code = 400


class MalformedPayloadError(RelayError):
    """The decoded body is not a valid JSON document."""

    status_code = 400


class PayloadTooLargeError(RelayError):
    """The request body exceeds the configured maximum size."""

    status_code = 413


class PublishError(RelayError):
    """The message could not be published to the webhook queue."""

    status_code = 502


class SinkError(RelayError):
    """Base class for database sink failures."""


class SinkConnectionError(SinkError, ConnectionError):
    """A connection to the database sink could not be established."""


class WriteError(SinkError):
    """A write against an open sink connection failed."""
