"""
Shared utilities for the Morph view client.

This package aggregates the ambient building blocks used by ``morph_client``:

- config: Client configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics fed by request events
- errors: Canonical error types and responses
- retry: Delay strategies for polling a not-ready upstream

Do not import from ``morph_client`` into shared/.
"""
