import asyncio
import logging
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Set, Union

from schoolboard.core.config import settings
from schoolboard.core.constants import QueryStatusEnum
from schoolboard.core.exceptions import FetchError
from schoolboard.core.query_config import STALE_TIMES
from schoolboard.query.keys import CacheKey

logger = logging.getLogger(__name__)

RetryPolicy = Union[bool, int, Callable[[int, Exception], bool]]


@dataclass(frozen=True)
class QueryContext:
    key: CacheKey
    client: "QueryClient"
    attempt: int = 1


FetchFn = Callable[[QueryContext], Awaitable[Any]]


@dataclass
class QueryOptions:
    stale_time: Optional[float] = None
    gc_time: Optional[float] = None
    enabled: bool = True
    select: Optional[Callable[[Any], Any]] = None
    retry: Optional[RetryPolicy] = None
    retry_delay: Optional[Callable[[int], float]] = None
    refetch_on_window_focus: Optional[bool] = None


@dataclass(frozen=True)
class QueryState:
    data: Any = None
    error: Optional[Exception] = None
    status: QueryStatusEnum = QueryStatusEnum.IDLE
    data_updated_at: float = 0.0
    error_updated_at: float = 0.0
    failure_count: int = 0
    is_fetching: bool = False
    is_invalidated: bool = False

    @property
    def has_data(self) -> bool:
        return self.data_updated_at > 0


def default_retry_delay(attempt: int) -> float:
    return min(2 ** attempt, settings.QUERY_MAX_RETRY_DELAY)


def should_retry(policy: RetryPolicy, failure_count: int, error: Exception) -> bool:
    if callable(policy):
        return bool(policy(failure_count, error))
    if isinstance(policy, bool):
        return policy
    return failure_count <= policy


class CacheEntry:
    """One cached query. State is replaced as a whole, never edited in place."""

    def __init__(self, key: CacheKey, stale_time: float, gc_time: float, created_at: float):
        self.key = key
        self.state = QueryState()
        self.stale_time = stale_time
        self.gc_time = gc_time
        self.fetch_fn: Optional[FetchFn] = None
        self.observers: Set[Any] = set()
        self.inactive_since: Optional[float] = created_at
        self._task: Optional[asyncio.Task] = None
        self._followup: Optional[asyncio.Task] = None
        # bumped on every invalidation; a fetch started under an older generation never marks data fresh
        self.generation = 0

    @property
    def data(self) -> Any:
        return self.state.data

    @property
    def error(self) -> Optional[Exception]:
        return self.state.error

    @property
    def status(self) -> QueryStatusEnum:
        return self.state.status

    @property
    def last_fetched_at(self) -> float:
        return self.state.data_updated_at

    @property
    def in_flight(self) -> Optional[asyncio.Task]:
        if self._followup is not None and not self._followup.done():
            return self._followup
        if self._task is not None and not self._task.done():
            return self._task
        return None

    def invalidate(self):
        self.generation += 1
        self.set_state(is_invalidated=True)

    def is_stale(self, now: float) -> bool:
        if not self.state.has_data or self.state.is_invalidated:
            return True
        return now - self.state.data_updated_at >= self.stale_time

    def set_state(self, **changes):
        self.state = replace(self.state, **changes)
        self._notify()

    def _notify(self):
        for observer in list(self.observers):
            try:
                observer.on_entry_update(self)
            except Exception as e:
                logger.error(f"Observer update failed for {self.key}: {e}", exc_info=True)


class QueryClient:
    """Process-wide query cache: one per server request, one per client session."""

    def __init__(
        self,
        *,
        stale_time: Optional[float] = None,
        gc_time: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
        retry_delay: Optional[Callable[[int], float]] = None,
        refetch_on_window_focus: Optional[bool] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._stale_time = stale_time
        self._gc_time = gc_time if gc_time is not None else settings.QUERY_GC_TIME
        self._retry = retry if retry is not None else settings.QUERY_RETRY
        self._retry_delay = retry_delay or default_retry_delay
        self._refetch_on_window_focus = (
            refetch_on_window_focus if refetch_on_window_focus is not None
            else settings.REFETCH_ON_WINDOW_FOCUS
        )
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self.hydrated_keys: Set[CacheKey] = set()
        self.consumed_snapshots: Set[str] = set()

    def now(self) -> float:
        return self._clock()

    def resolve_options(self, key: CacheKey, options: Optional[QueryOptions] = None) -> QueryOptions:
        options = options or QueryOptions()
        stale_time = options.stale_time
        if stale_time is None:
            stale_time = self._stale_time
        if stale_time is None:
            stale_time = STALE_TIMES.get(key.domain, settings.QUERY_STALE_TIME)
        return replace(
            options,
            stale_time=stale_time,
            gc_time=options.gc_time if options.gc_time is not None else self._gc_time,
            retry=options.retry if options.retry is not None else self._retry,
            retry_delay=options.retry_delay or self._retry_delay,
            refetch_on_window_focus=(
                options.refetch_on_window_focus if options.refetch_on_window_focus is not None
                else self._refetch_on_window_focus
            ),
        )

    # -- store ------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> Iterator[CacheEntry]:
        return iter(list(self._entries.values()))

    def get_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def build_entry(self, key: CacheKey, options: Optional[QueryOptions] = None) -> CacheEntry:
        self.collect_garbage()
        resolved = self.resolve_options(key, options)
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key, resolved.stale_time, resolved.gc_time, created_at=self.now())
            self._entries[key] = entry
        else:
            entry.stale_time = resolved.stale_time
            entry.gc_time = resolved.gc_time
        return entry

    def get_query_data(self, key: CacheKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set_query_data(self, key: CacheKey, data: Any, updated_at: Optional[float] = None) -> CacheEntry:
        entry = self._entries.get(key) or self.build_entry(key)
        entry.set_state(
            data=data,
            error=None,
            status=QueryStatusEnum.SUCCESS,
            data_updated_at=updated_at if updated_at is not None else self.now(),
            failure_count=0,
            is_invalidated=False,
        )
        return entry

    def subscribe(self, entry: CacheEntry, observer) -> None:
        entry.observers.add(observer)
        entry.inactive_since = None

    def unsubscribe(self, entry: CacheEntry, observer) -> None:
        entry.observers.discard(observer)
        if not entry.observers:
            entry.inactive_since = self.now()

    def collect_garbage(self) -> int:
        now = self.now()
        expired = [
            key for key, entry in self._entries.items()
            if not entry.observers
            and entry.in_flight is None
            and entry.inactive_since is not None
            and now - entry.inactive_since >= entry.gc_time
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} inactive cache entries")
        return len(expired)

    def remove_queries(self, prefix: CacheKey) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        logger.info(f"Removed {len(keys)} cache entries for {prefix}")
        return len(keys)

    def clear(self):
        self._entries.clear()
        self.hydrated_keys.clear()

    # -- fetching ---------------------------------------------------------

    def start_fetch(self, entry: CacheEntry, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> asyncio.Task:
        """Start a fetch for the entry, or join the one already in flight."""
        in_flight = entry.in_flight
        if in_flight is not None:
            logger.debug(f"Joining in-flight fetch for {entry.key}")
            return in_flight
        return self._launch(entry, fetch_fn, options)

    def start_refetch(self, entry: CacheEntry, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> asyncio.Task:
        """Fetch again after an invalidation, queued behind any fetch already running."""
        running = entry._task if entry._task is not None and not entry._task.done() else None
        if running is None:
            return self.start_fetch(entry, fetch_fn, options)
        if entry._followup is not None and not entry._followup.done():
            return entry._followup

        async def after_running():
            await asyncio.wait([running])
            return await self._launch(entry, fetch_fn, options)

        logger.debug(f"Queueing refetch for {entry.key} behind the running fetch")
        followup = asyncio.get_running_loop().create_task(after_running())
        followup.add_done_callback(lambda t: t.cancelled() or t.exception())
        entry._followup = followup
        return followup

    def _launch(self, entry: CacheEntry, fetch_fn: FetchFn, options: Optional[QueryOptions]) -> asyncio.Task:
        if not entry.state.has_data:
            self._check_hydration_mismatch(entry.key)

        entry.fetch_fn = fetch_fn
        resolved = self.resolve_options(entry.key, options)
        task = asyncio.get_running_loop().create_task(self._run(entry, fetch_fn, resolved))
        # background fetches report failure through entry state
        task.add_done_callback(lambda t: t.cancelled() or t.exception())
        entry._task = task
        entry.set_state(
            is_fetching=True,
            status=QueryStatusEnum.LOADING if entry.status == QueryStatusEnum.IDLE else entry.status,
        )
        return task

    async def _run(self, entry: CacheEntry, fetch_fn: FetchFn, options: QueryOptions) -> Any:
        try:
            return await self._attempt(entry, fetch_fn, options)
        except asyncio.CancelledError:
            entry._task = None
            entry.set_state(is_fetching=False)
            raise

    async def _attempt(self, entry: CacheEntry, fetch_fn: FetchFn, options: QueryOptions) -> Any:
        generation = entry.generation
        failure_count = 0
        while True:
            try:
                data = await fetch_fn(QueryContext(entry.key, self, attempt=failure_count + 1))
            except Exception as exc:
                failure_count += 1
                if should_retry(options.retry, failure_count, exc):
                    delay = options.retry_delay(failure_count)
                    logger.warning(f"Fetch failed for {entry.key} (attempt {failure_count}), retrying in {delay}s: {exc}")
                    entry.set_state(failure_count=failure_count)
                    await asyncio.sleep(delay)
                    continue

                if isinstance(exc, FetchError):
                    error = exc
                else:
                    error = FetchError(str(exc), key=entry.key, failure_count=failure_count)
                    error.__cause__ = exc
                logger.error(f"Fetch failed for {entry.key} after {failure_count} attempt(s): {exc}")
                entry._task = None
                entry.set_state(
                    error=error,
                    status=QueryStatusEnum.ERROR,
                    error_updated_at=self.now(),
                    failure_count=failure_count,
                    is_fetching=False,
                )
                raise error

            entry._task = None
            # invalidated while this fetch was running: the data may predate the change
            superseded = entry.generation != generation
            entry.set_state(
                data=data,
                error=None,
                status=QueryStatusEnum.SUCCESS,
                data_updated_at=self.now(),
                failure_count=0,
                is_fetching=False,
                is_invalidated=superseded,
            )
            logger.debug(f"Fetched {entry.key}" + (" (invalidated mid-flight)" if superseded else ""))
            return data

    async def fetch_query(self, key: CacheKey, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> Any:
        """Cached data when fresh, otherwise the result of a (shared) fetch."""
        entry = self.build_entry(key, options)
        self.hydrated_keys.discard(key)
        if not entry.is_stale(self.now()):
            logger.debug(f"Cache HIT for key: {key}")
            return entry.data

        logger.debug(f"Cache MISS for key: {key}")
        return await asyncio.shield(self.start_fetch(entry, fetch_fn, options))

    async def prefetch_query(self, key: CacheKey, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> None:
        try:
            await self.fetch_query(key, fetch_fn, options)
        except FetchError as e:
            logger.warning(f"Prefetch failed for {key}: {e}")

    async def invalidate_queries(self, prefix: CacheKey) -> int:
        """Mark matching entries stale and refetch the ones somebody is watching."""
        matched = [entry for entry in self.entries() if entry.key.startswith(prefix)]
        tasks = []
        for entry in matched:
            entry.invalidate()
            for observer in list(entry.observers):
                task = observer.on_invalidate()
                if task is not None and task not in tasks:
                    tasks.append(task)

        logger.info(f"Invalidated {len(matched)} cache entries for {prefix}")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(matched)

    async def on_focus(self) -> int:
        """Foreground regained: refetch stale entries whose observers allow it."""
        tasks = []
        for entry in self.entries():
            for observer in list(entry.observers):
                task = observer.on_focus()
                if task is not None and task not in tasks:
                    tasks.append(task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    def _check_hydration_mismatch(self, key: CacheKey):
        # hydrated keys leave the set once a reader consumes them
        siblings = [
            hydrated for hydrated in self.hydrated_keys
            if hydrated != key and hydrated.domain == key.domain and hydrated.resource == key.resource
        ]
        if siblings:
            logger.warning(
                f"Hydration key mismatch: fetching {key} although the server snapshot held "
                f"{', '.join(str(k) for k in siblings)}"
            )
            self.hydrated_keys.difference_update(siblings)
