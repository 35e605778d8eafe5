"""Exceptions raised by :mod:`thermia_online`."""

from __future__ import annotations


class ThermiaError(Exception):
    """Base class for all Thermia Online client errors."""


class ConfigurationError(ThermiaError):
    """The deployment configuration could not be fetched or parsed.

    Raised while connecting; there is no API base URL to work against.
    """


class NetworkError(ThermiaError):
    """A transport-level failure.

    *status* is the HTTP status of the last response, or ``None`` when no
    response was received (connection error, timeout).
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class AuthenticationError(ThermiaError):
    """The identity provider rejected the credentials or the login flow."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TokenParseError(ThermiaError):
    """The token endpoint returned a body that is not a usable token grant.

    Never escapes :meth:`~thermia_online.auth.Authenticator.authenticate`,
    which reports it as an unsuccessful attempt instead.
    """


class NotFoundError(ThermiaError, KeyError):
    """A device or register lookup found nothing."""
