import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from schoolboard.core.config import settings
from schoolboard.core.exceptions import BackendError
from schoolboard.core.filters import Predicate

logger = logging.getLogger(__name__)

Range = Tuple[int, int]
Order = Tuple[str, bool]


@dataclass
class QueryResponse:
    rows: List[Dict[str, Any]] = field(default_factory=list)
    count: int = 0


class DataBackend(ABC):
    """The hosted relational backend: (table, filters, range, order) -> {rows, count}."""

    @abstractmethod
    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Sequence[Predicate] = (),
        range: Optional[Range] = None,
        order: Optional[Order] = None,
    ) -> QueryResponse:
        pass

    @abstractmethod
    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update(self, table: str, id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def delete(self, table: str, id: Any) -> bool:
        pass


def _plain_columns(columns: str) -> Optional[List[str]]:
    """Top-level column names of a select list, or None when it asks for '*'."""
    names = []
    depth = 0
    token = ""
    for char in columns + ",":
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            token = token.strip()
            if token == "*":
                return None
            if token and "(" not in token:
                names.append(token.split(":")[-1].strip())
            token = ""
        else:
            token += char
    return names or None


class MemoryBackend(DataBackend):
    def __init__(self, tables: Optional[Dict[str, Iterable[Dict[str, Any]]]] = None):
        self._tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self._lock = asyncio.Lock()

    async def select(self, table, *, columns="*", filters=(), range=None, order=None) -> QueryResponse:
        async with self._lock:
            rows = [row for row in self._tables.get(table, []) if all(f.matches(row) for f in filters)]
            count = len(rows)
            if order:
                column, ascending = order
                present = [r for r in rows if r.get(column) is not None]
                missing = [r for r in rows if r.get(column) is None]
                rows = sorted(present, key=lambda r: r[column], reverse=not ascending) + missing
            if range:
                start, end = range
                rows = rows[start:end + 1]
            projection = _plain_columns(columns)
            if projection:
                rows = [{name: row.get(name) for name in projection} for row in rows]
            return QueryResponse(rows=copy.deepcopy(rows), count=count)

    async def insert(self, table, values):
        async with self._lock:
            rows = self._tables.setdefault(table, [])
            row = dict(values)
            if row.get("id") is None:
                numeric = [r["id"] for r in rows if isinstance(r.get("id"), int)]
                row["id"] = max(numeric, default=0) + 1
            rows.append(row)
            return dict(row)

    async def update(self, table, id, values):
        async with self._lock:
            for row in self._tables.get(table, []):
                if row.get("id") == id:
                    row.update(values)
                    return dict(row)
            raise BackendError(f"{table} {id} not found", status_code=404)

    async def delete(self, table, id):
        async with self._lock:
            rows = self._tables.get(table, [])
            remaining = [row for row in rows if row.get("id") != id]
            self._tables[table] = remaining
            return len(remaining) != len(rows)


class RestBackend(DataBackend):
    """PostgREST client for the hosted backend's /rest/v1 API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.access_token = access_token
        self._client = client or httpx.AsyncClient(
            base_url=f"{self.base_url}/rest/v1", timeout=timeout
        )

    def for_token(self, access_token: str) -> "RestBackend":
        """Same connection pool, requests authorized as the signed-in user."""
        return RestBackend(
            self.base_url, self.api_key, timeout=self.timeout,
            access_token=access_token, client=self._client,
        )

    def _headers(self, **extra) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
        }
        headers.update(extra)
        return headers

    async def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, f"/{table}", **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Backend {method} {table} failed: {e}")
            raise BackendError(f"Backend unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            logger.warning(f"Backend {method} {table} returned {response.status_code}: {message}")
            raise BackendError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _parse_count(content_range: Optional[str], fallback: int) -> int:
        # "0-9/42" or "*/0"
        if not content_range or "/" not in content_range:
            return fallback
        total = content_range.split("/")[-1]
        return int(total) if total.isdigit() else fallback

    async def select(self, table, *, columns="*", filters=(), range=None, order=None) -> QueryResponse:
        params: List[Tuple[str, str]] = [("select", columns)]
        params.extend(f.to_param() for f in filters)
        if order:
            column, ascending = order
            params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))

        headers = self._headers(Prefer="count=exact")
        if range:
            headers["Range-Unit"] = "items"
            headers["Range"] = f"{range[0]}-{range[1]}"

        response = await self._request("GET", table, params=params, headers=headers)
        rows = response.json()
        return QueryResponse(rows=rows, count=self._parse_count(response.headers.get("content-range"), len(rows)))

    async def insert(self, table, values):
        response = await self._request(
            "POST", table, json=values, headers=self._headers(Prefer="return=representation")
        )
        return response.json()[0]

    async def update(self, table, id, values):
        response = await self._request(
            "PATCH", table, params=[("id", f"eq.{id}")], json=values,
            headers=self._headers(Prefer="return=representation"),
        )
        rows = response.json()
        if not rows:
            raise BackendError(f"{table} {id} not found", status_code=404)
        return rows[0]

    async def delete(self, table, id):
        response = await self._request(
            "DELETE", table, params=[("id", f"eq.{id}")],
            headers=self._headers(Prefer="return=representation"),
        )
        return len(response.json()) > 0

    async def aclose(self):
        await self._client.aclose()


def create_backend() -> DataBackend:
    if settings.BACKEND_URL:
        logger.info("Initializing REST data backend")
        return RestBackend(settings.BACKEND_URL, settings.BACKEND_ANON_KEY, timeout=settings.BACKEND_TIMEOUT)

    logger.info("Using in-memory data backend")
    return MemoryBackend()

data_backend = create_backend()
