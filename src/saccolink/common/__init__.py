"""Common utilities for saccolink."""

from saccolink.common.errors import (
    ApiError,
    AuthenticationRejected,
    ConfigurationError,
    NetworkError,
    SaccolinkError,
    UnknownEndpoint,
)
from saccolink.common.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
    "SaccolinkError",
    "ConfigurationError",
    "NetworkError",
    "ApiError",
    "AuthenticationRejected",
    "UnknownEndpoint",
]
