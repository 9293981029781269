"""
Build a ``MorphClient`` from ``MorphSettings``.
"""

from typing import Optional

from prometheus_client import CollectorRegistry

from shared.config import MorphSettings, get_settings
from shared.logging import get_logger
from shared.metrics import get_metrics_collector
from shared.retry import RetryConfig
from .caching.stores import AsyncRedisViewStore, RedisViewStore
from .client import ErrorMode, MorphClient


logger = get_logger("morph.factory")


def create_client(
    settings: Optional[MorphSettings] = None,
    *,
    metrics_registry: Optional[CollectorRegistry] = None,
    **client_kwargs,
) -> MorphClient:
    """Wire transports, cache stores and metrics according to settings.

    Without ``redis_url`` the client falls back to a process-local store
    shared by its blocking and asyncio paths.
    """
    settings = settings or get_settings()

    owned_stores = []
    if settings.redis_url and "cache" not in client_kwargs:
        client_kwargs["cache"] = RedisViewStore.from_url(settings.redis_url)
        owned_stores.append(client_kwargs["cache"])
        if "async_cache" not in client_kwargs:
            client_kwargs["async_cache"] = AsyncRedisViewStore.from_url(settings.redis_url)
            owned_stores.append(client_kwargs["async_cache"])

    listeners = list(client_kwargs.pop("listeners", ()))
    if settings.enable_metrics:
        collector = get_metrics_collector(metrics_registry)
        listeners.append(collector)
        if settings.metrics_port:
            collector.start_metrics_server(settings.metrics_port)

    client = MorphClient(
        settings.endpoint,
        timeout=settings.timeout,
        http_timeout=settings.http_timeout,
        retry_config=RetryConfig.from_settings(settings),
        error_mode=ErrorMode(settings.error_mode),
        cache_prefix=settings.cache_prefix,
        jitter_cap=settings.jitter_cap,
        default_ttl=settings.default_ttl,
        default_null_ttl=settings.null_ttl,
        single_flight=settings.single_flight,
        listeners=listeners,
        owned_stores=owned_stores,
        **client_kwargs,
    )

    logger.info(
        "Morph client created",
        endpoint=settings.endpoint,
        env=settings.env,
        redis=bool(settings.redis_url),
        max_retries=settings.max_retries,
        error_mode=settings.error_mode,
        metrics=settings.enable_metrics,
    )
    return client
