"""
Error types raised by the version store and ad operations.

The HTTP layer maps these to status codes; everything else becomes a 500.
"""


class AdMixerError(Exception):
    """Base class for caller-correctable admixer errors."""

    status_code = 400


class NotFoundError(AdMixerError):
    """Ad, stream or version does not exist."""

    status_code = 404


class ValidationError(AdMixerError):
    """Version content or request data failed validation."""


class ImmutableVersionError(AdMixerError):
    """Attempt to mutate a frozen version."""


class AlreadyActiveError(AdMixerError):
    """Stream already has a different active version and force_freeze was not set."""


class DraftConflictError(AdMixerError):
    """Stream already has a draft that has not been resolved."""
