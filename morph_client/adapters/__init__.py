"""
Adapters package for the Morph client.

HTTP transports for the Morph API. Transports only perform the GET and
report network failures; status classification belongs to the client.
"""

from .transport import AsyncHttpxTransport, HttpxTransport, TransportResponse

__all__ = [
    "AsyncHttpxTransport",
    "HttpxTransport",
    "TransportResponse",
]
