"""Server prefetch and client hydration.

The server renders with a per-request client, then ships the successful
entries as a ``DehydratedState``. The consumer merges that snapshot into its
long-lived client once, so the first render reads the prefetched data instead
of fetching again.
"""
import json
import logging
import uuid
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from schoolboard.core.constants import QueryStatusEnum
from schoolboard.query.client import FetchFn, QueryClient, QueryOptions
from schoolboard.query.keys import CacheKey

logger = logging.getLogger(__name__)


class DehydratedQuery(BaseModel):
    key: List[Any]
    data: Any = None
    data_updated_at: float
    status: QueryStatusEnum = QueryStatusEnum.SUCCESS


class DehydratedState(BaseModel):
    snapshot_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    queries: List[DehydratedQuery] = []


async def prefetch(client: QueryClient, key: CacheKey, fetch_fn: FetchFn, options: Optional[QueryOptions] = None) -> None:
    """Fetch eagerly on the server. Failures are left out of the snapshot."""
    await client.prefetch_query(key, fetch_fn, options)


def _json_safe(data: Any) -> Any:
    # raw backend payloads are plain JSON already; anything else is stringified
    return json.loads(json.dumps(data, default=str))


def dehydrate(client: QueryClient) -> DehydratedState:
    queries = []
    for entry in client.entries():
        if entry.status != QueryStatusEnum.SUCCESS or not entry.state.has_data:
            continue
        queries.append(DehydratedQuery(
            key=entry.key.to_json(),
            data=_json_safe(entry.data),
            data_updated_at=entry.state.data_updated_at,
        ))
    state = DehydratedState(queries=queries)
    logger.debug(f"Dehydrated {len(queries)} queries into snapshot {state.snapshot_id}")
    return state


def hydrate(client: QueryClient, state: Optional[DehydratedState]) -> int:
    """Merge a snapshot into ``client``. Returns how many entries were written."""
    if state is None:
        return 0
    if state.snapshot_id in client.consumed_snapshots:
        logger.debug(f"Snapshot {state.snapshot_id} already hydrated")
        return 0

    written = 0
    for query in state.queries:
        key = CacheKey.from_json(query.key)
        entry = client.get_entry(key)
        if entry is not None and entry.state.has_data and entry.state.data_updated_at >= query.data_updated_at:
            continue
        client.set_query_data(key, query.data, updated_at=query.data_updated_at)
        client.hydrated_keys.add(key)
        written += 1

    client.consumed_snapshots.add(state.snapshot_id)
    logger.info(f"Hydrated {written} of {len(state.queries)} queries from snapshot {state.snapshot_id}")
    return written
