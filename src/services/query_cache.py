"""
Keyed cache of asynchronous query results.

One entry per query key (e.g. `("book", "42")`). Each entry tracks the last result,
its status, when it was last updated, and the request currently in flight.

Concurrency rules, all on a single event loop:
- at most one request per key and generation is in flight; later callers attach to it
- `invalidate`, `remove` and forced fetches start a new generation, and a request that
  completes after its generation was superseded is ignored (its own awaiters still get
  its result)
- failed fetches are retried according to the entry's `RetryPolicy`
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from core.signals import Signal, Unsubscribe
from services.retry import NO_RETRY, RetryPolicy
from shared.api_errors import ErrorDescriptor, classify_exception

logger = logging.getLogger(__name__)

QueryKey = tuple[Any, ...]
Fetcher = Callable[[], Awaitable[Any]]
FetcherFactory = Callable[[QueryKey], Fetcher]
Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


class QueryStatus(StrEnum):
    """Lifecycle of a cached query."""

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QuerySnapshot:
    """
    Read-only view of one cache entry.

    `status` stays SUCCESS while a refetch runs over existing data; `is_fetching`
    tells the two cases apart. `is_invalidated` marks data known to be outdated.
    """

    key: QueryKey
    data: Any = None
    status: QueryStatus = QueryStatus.IDLE
    last_updated: datetime | None = None
    error: ErrorDescriptor | None = None
    is_fetching: bool = False
    is_invalidated: bool = False

    @property
    def is_loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR


@dataclass
class _Entry:
    key: QueryKey
    signal: Signal[QuerySnapshot]
    generation: int = 0
    inflight: asyncio.Task | None = None
    fetcher: Fetcher | None = None
    stale_time: float | None = None
    refetch_after: float | None = None
    retry: RetryPolicy | None = None

    @property
    def snapshot(self) -> QuerySnapshot:
        return self.signal.value


def _utcnow() -> datetime:
    return datetime.now(UTC)


class QueryCache:
    """Shared cache behind every data view."""

    def __init__(
        self,
        *,
        stale_time: float = 0.0,
        retry: RetryPolicy = NO_RETRY,
        clock: Clock = _utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._default_stale_time = stale_time
        self._default_retry = retry
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[QueryKey, _Entry] = {}
        self._factories: dict[Any, FetcherFactory] = {}
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def snapshot(self, key: QueryKey) -> QuerySnapshot:
        """Current state of `key` (IDLE if never requested)."""
        entry = self._entries.get(key)
        return entry.snapshot if entry else QuerySnapshot(key=key)

    def snapshots(self, prefix: QueryKey = ()) -> Iterator[QuerySnapshot]:
        """Snapshots of every entry whose key starts with `prefix`."""
        for key, entry in list(self._entries.items()):
            if key[: len(prefix)] == prefix:
                yield entry.snapshot

    def subscribe(
        self,
        key: QueryKey,
        callback: Callable[[QuerySnapshot], None],
    ) -> Unsubscribe:
        """Observe `key`; the entry is created on first subscription."""
        return self._entry(key).signal.subscribe(callback)

    def has_subscribers(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.signal.subscriber_count)

    def is_stale(self, key: QueryKey, stale_time: float | None = None) -> bool:
        """Whether `key` has no usable data younger than its stale time."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return self._is_stale(entry, stale_time)

    def is_fetching(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        return bool(entry and entry.inflight is not None)

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def register_fetcher(self, kind: Any, factory: FetcherFactory) -> None:
        """
        Default fetcher for every key whose first element is `kind`.

        Lets `refetch` work for keys that no view has requested yet.
        """
        self._factories[kind] = factory

    async def fetch(
        self,
        key: QueryKey,
        fetcher: Fetcher | None = None,
        *,
        stale_time: float | None = None,
        refetch_after: float | None = None,
        retry: RetryPolicy | None = None,
        force: bool = False,
    ) -> Any:
        """
        Return data for `key`, requesting it only when needed.

        Fresh data is returned without a request. Otherwise an in-flight request for
        the current generation is joined, or a new one is started. `force` always
        starts a new generation and request.

        Raises whatever the fetcher raised after retries were exhausted.
        """
        entry = self._entry(key)
        if fetcher is not None:
            entry.fetcher = fetcher
        if stale_time is not None:
            entry.stale_time = stale_time
        if refetch_after is not None:
            entry.refetch_after = refetch_after
        if retry is not None:
            entry.retry = retry

        if force:
            self._supersede(entry)
        elif entry.inflight is not None:
            return await asyncio.shield(entry.inflight)
        elif not self._is_stale(entry):
            return entry.snapshot.data

        return await asyncio.shield(self._start(entry))

    async def refetch(self, key: QueryKey) -> Any:
        """Fetch `key` again regardless of freshness."""
        return await self.fetch(key, force=True)

    async def settle(self, key: QueryKey) -> Any:
        """
        Wait until `key` holds the result of its newest request and return it.

        A request whose result was discarded because a later generation replaced it
        does not count: this waits for the replacing request, or fetches again when
        the entry was left invalidated or empty.
        """
        while True:
            entry = self._entry(key)
            task, generation = entry.inflight, entry.generation
            if task is not None:
                try:
                    await asyncio.shield(task)
                except Exception:
                    if entry.generation == generation:
                        raise
                continue
            snapshot = entry.snapshot
            if snapshot.status == QueryStatus.SUCCESS and not snapshot.is_invalidated:
                return snapshot.data
            await self.fetch(key)

    def _start(self, entry: _Entry) -> asyncio.Task:
        fetcher = entry.fetcher or self._default_fetcher(entry.key)
        entry.fetcher = fetcher
        current = entry.snapshot
        has_data = current.status == QueryStatus.SUCCESS
        entry.signal.set(replace(
            current,
            status=QueryStatus.SUCCESS if has_data else QueryStatus.LOADING,
            is_fetching=True,
        ))
        task = asyncio.create_task(self._run(entry, fetcher, entry.generation))
        entry.inflight = task
        return task

    async def _run(self, entry: _Entry, fetcher: Fetcher, generation: int) -> Any:
        policy = entry.retry or self._default_retry
        failures = 0
        try:
            while True:
                try:
                    data = await fetcher()
                except Exception as e:
                    descriptor = classify_exception(e)
                    failures += 1
                    if entry.generation == generation and policy.allows(descriptor, failures):
                        delay = policy.delay_for(failures - 1)
                        logger.info(
                            "query_retry",
                            extra={
                                "key": entry.key,
                                "attempt": failures,
                                "kind": descriptor.kind.value,
                                "delay": delay,
                            },
                        )
                        await self._sleep(delay)
                        if entry.generation != generation:
                            logger.debug("query_retry_abandoned", extra={"key": entry.key})
                            raise
                        continue
                    if entry.generation == generation:
                        entry.signal.set(replace(
                            entry.snapshot,
                            status=QueryStatus.ERROR,
                            error=descriptor,
                            is_fetching=False,
                        ))
                    else:
                        logger.debug("query_error_discarded", extra={"key": entry.key})
                    raise
                if entry.generation == generation:
                    self._store(entry, data)
                else:
                    logger.debug("query_result_discarded", extra={"key": entry.key})
                return data
        finally:
            if entry.inflight is asyncio.current_task():
                entry.inflight = None

    def _default_fetcher(self, key: QueryKey) -> Fetcher:
        factory = self._factories.get(key[0]) if key else None
        if factory is None:
            raise LookupError(f"No fetcher registered for query key {key!r}")
        return factory(key)

    # ------------------------------------------------------------------
    # Writing and invalidation
    # ------------------------------------------------------------------

    def set_data(self, key: QueryKey, data: Any) -> None:
        """Store `data` as a successful result for `key`."""
        entry = self._entry(key)
        self._supersede(entry)
        self._store(entry, data)

    def invalidate(self, key: QueryKey) -> bool:
        """
        Mark `key` outdated and supersede any request in flight.

        Data stays visible until a refetch replaces it. Returns False if the key was
        never requested.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        self._supersede(entry)
        current = entry.snapshot
        # A first load that was superseded has nothing left to wait for
        status = QueryStatus.IDLE if current.status == QueryStatus.LOADING else current.status
        entry.signal.set(replace(
            current, status=status, is_invalidated=True, is_fetching=False,
        ))
        return True

    def invalidate_family(self, prefix: QueryKey, *, refetch_active: bool = True) -> list[QueryKey]:  # noqa: E501
        """
        Invalidate every key starting with `prefix`.

        Keys with subscribers are refetched in the background when `refetch_active`
        is set; nothing waits for those requests. Returns the invalidated keys.
        """
        keys = [key for key in self._entries if key[: len(prefix)] == prefix]
        for key in keys:
            self.invalidate(key)
            if refetch_active and self.has_subscribers(key):
                self._spawn(key)
        return keys

    def remove(self, key: QueryKey) -> None:
        """
        Drop the cached result for `key`.

        Subscribers and the registered fetcher stay attached, so the next fetch shows
        a loading state instead of old data.
        """
        entry = self._entries.get(key)
        if entry is None:
            return
        self._supersede(entry)
        entry.signal.set(QuerySnapshot(key=key))

    def refetch_expired(self) -> list[QueryKey]:
        """
        Refetch, in the background, subscribed entries older than their refetch window.

        Never scheduled automatically; the application decides when to sweep.
        """
        now = self._clock()
        expired = []
        for key, entry in list(self._entries.items()):
            last_updated = entry.snapshot.last_updated
            if (
                entry.refetch_after is None
                or last_updated is None
                or entry.inflight is not None
                or not entry.signal.subscriber_count
            ):
                continue
            if (now - last_updated).total_seconds() >= entry.refetch_after:
                expired.append(key)
                self._spawn(key, force=True)
        return expired

    async def wait_for_background(self) -> None:
        """Wait until every background refetch has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _entry(self, key: QueryKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(key=key, signal=Signal(QuerySnapshot(key=key)))
            self._entries[key] = entry
        return entry

    def _supersede(self, entry: _Entry) -> None:
        entry.generation += 1
        entry.inflight = None

    def _store(self, entry: _Entry, data: Any) -> None:
        entry.signal.set(QuerySnapshot(
            key=entry.key,
            data=data,
            status=QueryStatus.SUCCESS,
            last_updated=self._clock(),
        ))

    def _is_stale(self, entry: _Entry, stale_time: float | None = None) -> bool:
        snapshot = entry.snapshot
        if snapshot.status != QueryStatus.SUCCESS or snapshot.is_invalidated:
            return True
        if snapshot.last_updated is None:
            return True
        if stale_time is None:
            stale_time = entry.stale_time
        if stale_time is None:
            stale_time = self._default_stale_time
        age = (self._clock() - snapshot.last_updated).total_seconds()
        return age >= stale_time

    def _spawn(self, key: QueryKey, *, force: bool = False) -> None:
        task = asyncio.create_task(self.fetch(key, force=force))
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "query_background_refetch_failed",
                extra={"error": classify_exception(error).kind.value},
            )
