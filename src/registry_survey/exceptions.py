"""Exceptions raised while surveying container registries."""

__all__ = [
    "BackendError",
    "InvalidReferenceError",
    "NotFoundError",
    "NotSupportedError",
    "OperationCancelledError",
    "RegistrySurveyError",
]


class RegistrySurveyError(Exception):
    """Base class for all registry survey errors."""


class InvalidReferenceError(RegistrySurveyError, ValueError):
    """A registry reference or host could not be parsed."""


class NotSupportedError(RegistrySurveyError):
    """No registry client is willing to handle the given host.

    Only raised inside client resolution; a resolver always has a generic
    fallback, so callers should never see this.
    """


class NotFoundError(RegistrySurveyError):
    """The referenced repository or tag namespace does not exist."""


class BackendError(RegistrySurveyError):
    """A registry backend call failed.

    Covers network failures, unexpected status codes, and response bodies
    that could not be decoded.  The underlying exception is chained as
    ``__cause__``.
    """


class OperationCancelledError(RegistrySurveyError):
    """The operation was cancelled while waiting on the registry."""
