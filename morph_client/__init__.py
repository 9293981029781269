"""
Client for the Morph view rendering API.

Fetches rendered view fragments (head, body, footer) with cache-aside
caching, negative caching of 404s, stampede-jittered expiry and bounded
polling while the upstream answers 202.
"""

from shared.errors import (
    MorphDecodeError,
    MorphError,
    MorphTransportError,
    NotReadyExhaustedError,
    TransportErrorKind,
    ValidationError,
)
from .caching.policy import CacheTtl
from .client import ErrorMode, MorphClient
from .domain.events import RequestCompleted
from .domain.view import ID_PLACEHOLDER, MorphView
from .factory import create_client

__all__ = [
    "CacheTtl",
    "ErrorMode",
    "ID_PLACEHOLDER",
    "MorphClient",
    "MorphDecodeError",
    "MorphError",
    "MorphTransportError",
    "MorphView",
    "NotReadyExhaustedError",
    "RequestCompleted",
    "TransportErrorKind",
    "ValidationError",
    "create_client",
]
