"""Subscriber side of the query executor.

An observer watches exactly one key at a time. When its key changes, it drops
the old entry, so a slower fetch that completes for the previous key lands in
the cache but never in this observer's result.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from schoolboard.core.constants import QueryStatusEnum
from schoolboard.core.exceptions import FetchError
from schoolboard.query.client import CacheEntry, FetchFn, QueryClient, QueryOptions
from schoolboard.query.keys import CacheKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryResult:
    key: CacheKey
    data: Any
    error: Optional[Exception]
    status: QueryStatusEnum
    is_loading: bool
    is_fetching: bool
    is_stale: bool
    data_updated_at: float
    refetch: Callable

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatusEnum.SUCCESS


Listener = Callable[[QueryResult], None]


class QueryObserver:
    def __init__(self, client: QueryClient, key: CacheKey, fetch_fn: FetchFn, options: Optional[QueryOptions] = None):
        self.client = client
        self.key = key
        self.fetch_fn = fetch_fn
        self._raw_options = options
        self.options = client.resolve_options(key, options)
        self._entry: Optional[CacheEntry] = None
        self._listeners: List[Listener] = []
        self._selected: Optional[Tuple[Callable, Any, Any]] = None

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    def mount(self) -> Optional[asyncio.Task]:
        """Attach to the current key's entry and fetch when it is missing or stale."""
        self._entry = self.client.build_entry(self.key, self._raw_options)
        self.client.subscribe(self._entry, self)
        self._entry.fetch_fn = self.fetch_fn
        self.client.hydrated_keys.discard(self.key)
        if self.options.enabled and self._entry.is_stale(self.client.now()):
            return self.client.start_fetch(self._entry, self.fetch_fn, self._raw_options)
        return None

    def set_query(self, key: CacheKey, fetch_fn: Optional[FetchFn] = None, options: Optional[QueryOptions] = None) -> Optional[asyncio.Task]:
        """Switch to new params/role/search. Fetches when the new key needs it."""
        self.fetch_fn = fetch_fn or self.fetch_fn
        if options is not None:
            self._raw_options = options
        self.options = self.client.resolve_options(key, self._raw_options)

        if key == self.key and self._entry is not None:
            return None

        if self._entry is not None:
            self.client.unsubscribe(self._entry, self)
        self.key = key
        self._selected = None
        task = self.mount()
        self._emit()
        return task

    def destroy(self):
        if self._entry is not None:
            self.client.unsubscribe(self._entry, self)
            self._entry = None
        self._listeners.clear()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _select(self, data: Any) -> Any:
        select = self.options.select
        if select is None:
            return data
        if self._selected is not None and self._selected[0] is select and self._selected[1] is data:
            return self._selected[2]
        selected = select(data)
        self._selected = (select, data, selected)
        return selected

    def get_result(self) -> QueryResult:
        entry = self._entry or self.client.get_entry(self.key)
        if entry is None:
            return QueryResult(
                key=self.key, data=None, error=None, status=QueryStatusEnum.IDLE,
                is_loading=False, is_fetching=False, is_stale=True, data_updated_at=0.0,
                refetch=self.refetch,
            )

        state = entry.state
        return QueryResult(
            key=self.key,
            data=self._select(state.data) if state.has_data else None,
            error=state.error,
            status=state.status,
            is_loading=self.options.enabled and state.is_fetching and not state.has_data,
            is_fetching=state.is_fetching,
            is_stale=entry.is_stale(self.client.now()),
            data_updated_at=state.data_updated_at,
            refetch=self.refetch,
        )

    async def refetch(self) -> QueryResult:
        if self._entry is None:
            self.mount()
        task = self.client.start_fetch(self._entry, self.fetch_fn, self._raw_options)
        try:
            await asyncio.shield(task)
        except FetchError:
            pass
        return self.get_result()

    async def resolve(self) -> QueryResult:
        """Wait for the current key's fetch to settle and return its result."""
        while True:
            key = self.key
            entry = self.client.get_entry(key)
            task = entry.in_flight if entry else None
            if task is None:
                return self.get_result()
            try:
                await asyncio.shield(task)
            except FetchError:
                # surfaced through the result's error
                pass
            if key == self.key:
                return self.get_result()

    def on_entry_update(self, entry: CacheEntry):
        if entry.key != self.key:
            return
        self._emit()

    def on_invalidate(self) -> Optional[asyncio.Task]:
        if not self.options.enabled or self._entry is None:
            return None
        return self.client.start_refetch(self._entry, self.fetch_fn, self._raw_options)

    def on_focus(self) -> Optional[asyncio.Task]:
        if not (self.options.enabled and self.options.refetch_on_window_focus) or self._entry is None:
            return None
        if not self._entry.is_stale(self.client.now()):
            return None
        return self.client.start_fetch(self._entry, self.fetch_fn, self._raw_options)

    def _emit(self):
        if not self._listeners:
            return
        result = self.get_result()
        for listener in list(self._listeners):
            listener(result)


def use_query(client: QueryClient, key: CacheKey, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> QueryObserver:
    """Mount an observer for ``key``; read state with ``get_result()``."""
    observer = QueryObserver(client, key, fetch_fn, options)
    observer.mount()
    return observer
