"""Error taxonomy shared by the core, the providers and the HTTP layer."""


class OpenNowError(RuntimeError):
    """Base class for errors surfaced by the shop status service."""

    http_status = 500


class ValidationError(OpenNowError):
    """Raised when shop fields are missing or malformed."""

    http_status = 400


class NotFoundError(OpenNowError):
    """Raised when a shop cannot be resolved and cannot be created."""

    http_status = 404


class InternalError(OpenNowError):
    """Raised on storage failures. Callers may retry."""

    http_status = 500


class ProviderUnavailable(OpenNowError):
    """Raised by an external place-data provider. Recovered by the fallback chain."""

    http_status = 503
