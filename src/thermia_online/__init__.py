"""Python API and CLI for Thermia Online heat pumps."""

from thermia_online._transport import RetryPolicy
from thermia_online.auth import Authenticator, AuthState, Session
from thermia_online.client import Client, Device, HistoricalSample
from thermia_online.exceptions import (
    AuthenticationError,
    ConfigurationError,
    NetworkError,
    NotFoundError,
    ThermiaError,
    TokenParseError,
)
from thermia_online.heatpump import HeatPump
from thermia_online.registers import QUANTITIES, Quantity

__all__ = [
    "AuthState",
    "AuthenticationError",
    "Authenticator",
    "Client",
    "ConfigurationError",
    "Device",
    "HeatPump",
    "HistoricalSample",
    "NetworkError",
    "NotFoundError",
    "QUANTITIES",
    "Quantity",
    "RetryPolicy",
    "Session",
    "ThermiaError",
    "TokenParseError",
]
