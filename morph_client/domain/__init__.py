"""
Domain values for the Morph client.

Pure request/response types: URL building, the per-call request envelope,
the rendered view, and request completion events. Nothing here performs I/O.
"""

from .envelope import Envelope
from .events import ListenerRegistry, RequestCompleted
from .url_builder import UrlBuilder
from .view import ID_PLACEHOLDER, MorphView

__all__ = [
    "Envelope",
    "ID_PLACEHOLDER",
    "ListenerRegistry",
    "MorphView",
    "RequestCompleted",
    "UrlBuilder",
]
