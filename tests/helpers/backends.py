from typing import Any, Dict, List, Optional, Tuple

from schoolboard.core.backend import DataBackend, MemoryBackend, QueryResponse
from schoolboard.core.exceptions import BackendError


class CountingBackend(MemoryBackend):
    """Memory backend that records every select it serves."""

    def __init__(self, tables=None):
        super().__init__(tables)
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def select(self, table, **kwargs):
        self.calls.append((table, kwargs))
        return await super().select(table, **kwargs)

    @property
    def tables_called(self) -> List[str]:
        return [table for table, _ in self.calls]


class StubBackend(DataBackend):
    """Answers every select with the same canned response."""

    def __init__(self, response: QueryResponse):
        self.response = response
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def select(self, table, **kwargs):
        self.calls.append((table, kwargs))
        return self.response

    async def insert(self, table, values):
        return dict(values)

    async def update(self, table, id, values):
        return {"id": id, **values}

    async def delete(self, table, id):
        return True


class FailingBackend(DataBackend):
    def __init__(self, message: str = "connection refused", status_code: Optional[int] = 503):
        self.message = message
        self.status_code = status_code
        self.attempts = 0

    async def select(self, table, **kwargs):
        self.attempts += 1
        raise BackendError(self.message, status_code=self.status_code)

    async def insert(self, table, values):
        raise BackendError(self.message, status_code=self.status_code)

    async def update(self, table, id, values):
        raise BackendError(self.message, status_code=self.status_code)

    async def delete(self, table, id):
        raise BackendError(self.message, status_code=self.status_code)
