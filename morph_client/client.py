"""
Morph view client: cache-aside fetches of rendered views.

``MorphClient.fetch_view`` blocks; ``afetch_view`` is its coroutine twin and
``fetch_view_async`` schedules it as a task. Both run the same steps:

    cache lookup -> GET -> poll while 202 -> classify -> cache write -> return

Views and confirmed 404s are cached with jittered expiry. Other failures are
never cached, so the next call goes back to the network.
"""

import asyncio
import random
import time
from enum import Enum
from typing import Iterable, Mapping, Optional, Tuple

from shared.errors import (
    MorphError,
    MorphTransportError,
    NotReadyExhaustedError,
    TransportErrorKind,
    ValidationError,
)
from shared.logging import current_fetch_id, end_fetch, get_logger, start_fetch
from shared.retry import RetryConfig, calculate_delay
from .adapters.transport import AsyncHttpxTransport, HttpxTransport, TransportResponse
from .caching.inflight import asyncio_locks, thread_locks
from .caching.policy import (
    DEFAULT_JITTER_CAP,
    CacheTtl,
    build_cache_key,
    jittered_ttl,
    resolve_ttl,
)
from .caching.stores import AsyncMemoryViewStore, CacheEntry, MemoryViewStore
from .domain import events
from .domain.envelope import Envelope, TtlSpec
from .domain.events import ListenerRegistry, RequestCompleted, RequestListener
from .domain.url_builder import UrlBuilder
from .domain.view import MorphView


class ErrorMode(str, Enum):
    """How failures other than 404 reach the caller."""
    RAISE = "raise"
    RETURN_NONE = "return_none"


def _check_ttl(name: str, ttl: TtlSpec) -> None:
    try:
        resolve_ttl(ttl)
    except (AttributeError, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid {name}: {ttl!r}", details={name: str(ttl)}) from e


class _Call:
    """Bookkeeping for one fetch."""

    def __init__(self, envelope: Envelope, cache_key: str):
        self.envelope = envelope
        self.cache_key = cache_key
        self.started = time.perf_counter()
        self.attempts = 0
        self.status_code: Optional[int] = None

    @property
    def url(self) -> str:
        return self.envelope.url


class MorphClient:
    """Client for the Morph view rendering API.

    ``max_retries`` is shorthand for ``RetryConfig(max_attempts=max_retries)``
    with no delay between polls. When ``retry_config`` is given it takes
    precedence and ``max_retries`` is ignored.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        cache=None,
        async_cache=None,
        transport=None,
        async_transport=None,
        timeout: int = 3,
        http_timeout: float = 10.0,
        max_retries: int = 1,
        retry_config: Optional[RetryConfig] = None,
        error_mode: ErrorMode = ErrorMode.RAISE,
        cache_prefix: str = "morph",
        jitter_cap: int = DEFAULT_JITTER_CAP,
        default_ttl: TtlSpec = CacheTtl.NORMAL,
        default_null_ttl: TtlSpec = CacheTtl.SHORT,
        single_flight: bool = True,
        rng: Optional[random.Random] = None,
        listeners: Iterable[RequestListener] = (),
        owned_stores: Iterable = (),
        sleep=time.sleep,
        async_sleep=asyncio.sleep,
    ):
        self.logger = get_logger("morph.client")
        self.url_builder = UrlBuilder(endpoint)
        self.timeout = timeout
        self.http_timeout = http_timeout
        self.retry_config = retry_config or RetryConfig(max_attempts=max_retries)
        self.error_mode = ErrorMode(error_mode)
        self.cache_prefix = cache_prefix
        self.jitter_cap = jitter_cap
        # Validated here so a bad preset fails at startup
        _check_ttl("default_ttl", default_ttl)
        _check_ttl("default_null_ttl", default_null_ttl)
        self.default_ttl = default_ttl
        self.default_null_ttl = default_null_ttl
        self.single_flight = single_flight
        self.listeners = ListenerRegistry(listeners)

        if cache is None and async_cache is None:
            cache = MemoryViewStore()
        if async_cache is None:
            async_cache = AsyncMemoryViewStore(cache if isinstance(cache, MemoryViewStore) else None)
        if cache is None:
            cache = async_cache.store if isinstance(async_cache, AsyncMemoryViewStore) else MemoryViewStore()
        self.cache = cache
        self.async_cache = async_cache

        self._transport = transport
        self._async_transport = async_transport
        self._owned_transport = None
        self._owned_async_transport = None
        self._owned_stores = list(owned_stores)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._async_sleep = async_sleep
        self._flush_cache_items = False
        self._thread_locks = thread_locks()
        self._async_locks = asyncio_locks()

    @property
    def max_retries(self) -> int:
        return self.retry_config.max_attempts

    @property
    def transport(self):
        if self._transport is None:
            self._owned_transport = HttpxTransport(timeout=self.http_timeout)
            self._transport = self._owned_transport
        return self._transport

    @property
    def async_transport(self):
        if self._async_transport is None:
            self._owned_async_transport = AsyncHttpxTransport(timeout=self.http_timeout)
            self._async_transport = self._owned_async_transport
        return self._async_transport

    def set_flush_cache_items(self, flush_cache_items: bool) -> None:
        """When set, lookups drop the cached entry and refetch."""
        self._flush_cache_items = flush_cache_items

    def add_listener(self, listener: RequestListener) -> None:
        self.listeners.add(listener)

    def build_envelope(
        self,
        template: str,
        id: str,
        parameters: Optional[Mapping[str, str]] = None,
        query_parameters: Optional[Mapping[str, str]] = None,
        ttl: Optional[TtlSpec] = None,
        null_ttl: Optional[TtlSpec] = None,
    ) -> Envelope:
        """Describe one request; TTLs left as ``None`` use the client defaults.

        Raises ``ValidationError`` for a bad template or TTL before any cache
        or network access.
        """
        ttl = self.default_ttl if ttl is None else ttl
        null_ttl = self.default_null_ttl if null_ttl is None else null_ttl
        _check_ttl("ttl", ttl)
        _check_ttl("null_ttl", null_ttl)

        return Envelope.build(
            self.url_builder,
            template,
            id,
            parameters or {},
            query_parameters or {},
            self.timeout,
            ttl,
            null_ttl,
        )

    def cache_key(self, envelope: Envelope) -> str:
        return build_cache_key(self.cache_prefix, envelope.url, envelope.id)

    # Blocking API

    def fetch_view(
        self,
        template: str,
        id: str,
        parameters: Optional[Mapping[str, str]] = None,
        query_parameters: Optional[Mapping[str, str]] = None,
        ttl: Optional[TtlSpec] = None,
        null_ttl: Optional[TtlSpec] = None,
    ) -> Optional[MorphView]:
        """Fetch a view, from cache when possible. ``None`` means not found."""
        envelope = self.build_envelope(template, id, parameters, query_parameters, ttl, null_ttl)
        call = _Call(envelope, self.cache_key(envelope))
        token = start_fetch()
        try:
            return self._run(call)
        finally:
            end_fetch(token)

    def _run(self, call: _Call) -> Optional[MorphView]:
        self._log("info", "Fetching view", url=call.url)
        try:
            entry = self._lookup(call)
            if entry is not None:
                return self._from_cache(call, entry)

            self._log("info", "View cache miss", url=call.url, cache_key=call.cache_key)
            if not self.single_flight:
                return self._fetch(call)

            with self._thread_locks.get(call.cache_key):
                # Another thread may have filled the cache while we waited
                entry = self._lookup(call)
                if entry is not None:
                    return self._from_cache(call, entry)
                return self._fetch(call)
        except MorphError as e:
            return self._fail(call, e)

    def _lookup(self, call: _Call) -> Optional[CacheEntry]:
        try:
            if self._flush_cache_items:
                self.cache.delete(call.cache_key)
                return None
            return self.cache.get(call.cache_key)
        except Exception as e:
            self._log("error", "View cache fetch error", cache_key=call.cache_key, error=str(e))
            return None

    def _fetch(self, call: _Call) -> Optional[MorphView]:
        response = self._get(call)
        if response.status_code == 202:
            response = self._poll(call)

        entry, ttl = self._classify(call, response)
        self._write(call, entry, ttl)
        return self._complete(call, entry)

    def _get(self, call: _Call) -> TransportResponse:
        call.attempts += 1
        response = self.transport.get(call.url)
        call.status_code = response.status_code
        return response

    def _poll(self, call: _Call) -> TransportResponse:
        for retry in range(1, self.max_retries + 1):
            delay = self._poll_delay(call, retry)
            if delay > 0:
                self._sleep(delay)
            response = self._get(call)
            if response.status_code != 202:
                return response
        raise NotReadyExhaustedError(call.url, call.attempts)

    def _write(self, call: _Call, entry: CacheEntry, ttl: Optional[int]) -> None:
        if ttl == 0:
            return
        try:
            self.cache.set(call.cache_key, entry, ttl)
        except Exception as e:
            self._log("error", "View cache set error", cache_key=call.cache_key, error=str(e))

    # Non-blocking API

    async def afetch_view(
        self,
        template: str,
        id: str,
        parameters: Optional[Mapping[str, str]] = None,
        query_parameters: Optional[Mapping[str, str]] = None,
        ttl: Optional[TtlSpec] = None,
        null_ttl: Optional[TtlSpec] = None,
    ) -> Optional[MorphView]:
        """Coroutine version of ``fetch_view``."""
        envelope = self.build_envelope(template, id, parameters, query_parameters, ttl, null_ttl)
        call = _Call(envelope, self.cache_key(envelope))
        token = start_fetch()
        try:
            return await self._arun(call)
        finally:
            end_fetch(token)

    async def _arun(self, call: _Call) -> Optional[MorphView]:
        self._log("info", "Asynchronously fetching view", url=call.url)
        try:
            entry = await self._alookup(call)
            if entry is not None:
                return self._from_cache(call, entry)

            self._log("info", "View cache miss", url=call.url, cache_key=call.cache_key)
            if not self.single_flight:
                return await self._afetch(call)

            async with self._async_locks.get(call.cache_key):
                entry = await self._alookup(call)
                if entry is not None:
                    return self._from_cache(call, entry)
                return await self._afetch(call)
        except asyncio.CancelledError:
            self._log("info", "View fetch cancelled", url=call.url, attempts=call.attempts)
            raise
        except MorphError as e:
            return self._fail(call, e)

    def fetch_view_async(
        self,
        template: str,
        id: str,
        parameters: Optional[Mapping[str, str]] = None,
        query_parameters: Optional[Mapping[str, str]] = None,
        ttl: Optional[TtlSpec] = None,
        null_ttl: Optional[TtlSpec] = None,
    ) -> "asyncio.Task[Optional[MorphView]]":
        """Schedule ``afetch_view`` on the running loop and return its task.

        Cancelling the task stops any polling in progress; nothing is cached
        for a cancelled fetch.
        """
        return asyncio.ensure_future(
            self.afetch_view(template, id, parameters, query_parameters, ttl, null_ttl)
        )

    async def _alookup(self, call: _Call) -> Optional[CacheEntry]:
        try:
            if self._flush_cache_items:
                await self.async_cache.delete(call.cache_key)
                return None
            return await self.async_cache.get(call.cache_key)
        except Exception as e:
            self._log("error", "View cache fetch error", cache_key=call.cache_key, error=str(e))
            return None

    async def _afetch(self, call: _Call) -> Optional[MorphView]:
        response = await self._aget(call)
        if response.status_code == 202:
            response = await self._apoll(call)

        entry, ttl = self._classify(call, response)
        await self._awrite(call, entry, ttl)
        return self._complete(call, entry)

    async def _aget(self, call: _Call) -> TransportResponse:
        call.attempts += 1
        response = await self.async_transport.get(call.url)
        call.status_code = response.status_code
        return response

    async def _apoll(self, call: _Call) -> TransportResponse:
        for retry in range(1, self.max_retries + 1):
            delay = self._poll_delay(call, retry)
            if delay > 0:
                await self._async_sleep(delay)
            response = await self._aget(call)
            if response.status_code != 202:
                return response
        raise NotReadyExhaustedError(call.url, call.attempts)

    async def _awrite(self, call: _Call, entry: CacheEntry, ttl: Optional[int]) -> None:
        if ttl == 0:
            return
        try:
            await self.async_cache.set(call.cache_key, entry, ttl)
        except Exception as e:
            self._log("error", "View cache set error", cache_key=call.cache_key, error=str(e))

    # Shared steps

    def _poll_delay(self, call: _Call, retry: int) -> float:
        delay = calculate_delay(retry, self.retry_config, self._rng)
        self._log(
            "warning",
            "View not ready, retrying",
            url=call.url,
            retry=retry,
            max_retries=self.max_retries,
            delay=delay
        )
        return delay

    def _classify(self, call: _Call, response: TransportResponse) -> Tuple[CacheEntry, Optional[int]]:
        """Map a final upstream response to the entry to cache and its expiry."""
        if response.status_code == 200:
            view = MorphView.decode(call.envelope.id, response.content)
            return CacheEntry(view=view), self._expiry(call.envelope.ttl)

        if response.status_code == 404:
            self._log("info", "View not found", url=call.url)
            return CacheEntry.absent(), self._expiry(call.envelope.null_ttl)

        raise MorphTransportError(
            TransportErrorKind.HTTP,
            f"Error communicating with Morph API on {call.url}. Response code was {response.status_code}",
            status_code=response.status_code,
            details={"url": call.url}
        )

    def _expiry(self, ttl: TtlSpec) -> Optional[int]:
        return jittered_ttl(resolve_ttl(ttl), self._rng, self.jitter_cap)

    def _from_cache(self, call: _Call, entry: CacheEntry) -> Optional[MorphView]:
        self._log("info", "Got view from cache", url=call.url, absent=entry.is_absent)
        outcome = events.OUTCOME_ABSENT_HIT if entry.is_absent else events.OUTCOME_HIT
        self._emit(call, outcome, from_cache=True)
        return entry.view

    def _complete(self, call: _Call, entry: CacheEntry) -> Optional[MorphView]:
        outcome = events.OUTCOME_NOT_FOUND if entry.is_absent else events.OUTCOME_OK
        self._emit(call, outcome, from_cache=False)
        return entry.view

    def _fail(self, call: _Call, error: MorphError) -> Optional[MorphView]:
        self._log(
            "error",
            "Morph view request failed",
            url=call.url,
            code=error.code,
            status_code=call.status_code,
            attempts=call.attempts,
            error=error.message
        )
        outcome = events.OUTCOME_NOT_READY if isinstance(error, NotReadyExhaustedError) else events.OUTCOME_ERROR
        self._emit(call, outcome, from_cache=False, error_code=error.code)

        if self.error_mode is ErrorMode.RAISE:
            raise error
        return None

    def _emit(self, call: _Call, outcome: str, from_cache: bool, error_code: Optional[str] = None) -> None:
        if not len(self.listeners):
            return
        self.listeners.emit(RequestCompleted(
            url=call.url,
            cache_key=call.cache_key,
            outcome=outcome,
            status_code=call.status_code,
            attempts=call.attempts,
            latency_seconds=time.perf_counter() - call.started,
            from_cache=from_cache,
            error_code=error_code,
            fetch_id=current_fetch_id(),
        ))

    def _log(self, level: str, event: str, **kwargs) -> None:
        # A broken log pipeline must never fail a fetch
        try:
            getattr(self.logger, level)(event, **kwargs)
        except Exception:
            pass

    # Lifecycle

    def close(self) -> None:
        """Release owned transports and blocking cache stores.

        Async stores need a running loop; use ``aclose`` to release those too.
        """
        if self._owned_transport is not None:
            self._owned_transport.close()
        for store in self._owned_stores:
            if not hasattr(store, "aclose"):
                store.close()

    async def aclose(self) -> None:
        """Release everything the client owns, blocking and async."""
        if self._owned_async_transport is not None:
            await self._owned_async_transport.aclose()
        if self._owned_transport is not None:
            self._owned_transport.close()
        for store in self._owned_stores:
            if hasattr(store, "aclose"):
                await store.aclose()
            else:
                store.close()

    def __enter__(self) -> "MorphClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    async def __aenter__(self) -> "MorphClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
