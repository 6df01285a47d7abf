import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from schoolboard.query.client import QueryClient
from schoolboard.query.keys import CacheKey

logger = logging.getLogger(__name__)


class Mutation:
    """A write action that invalidates the key families it touches once it succeeds."""

    def __init__(
        self,
        fn: Callable[[Any], Awaitable[Any]],
        client: QueryClient,
        invalidates: Iterable[CacheKey] = (),
        on_success: Optional[Callable[[Any, Any], Any]] = None,
        on_error: Optional[Callable[[Exception, Any], Any]] = None,
    ):
        self.fn = fn
        self.client = client
        self.invalidates: List[CacheKey] = list(invalidates)
        self.on_success = on_success
        self.on_error = on_error
        self.is_pending = False
        self.error: Optional[Exception] = None

    async def execute(self, variables: Any = None) -> Any:
        self.is_pending = True
        self.error = None
        try:
            data = await self.fn(variables)
        except Exception as e:
            self.error = e
            logger.warning(f"Mutation failed: {e}")
            if self.on_error:
                self.on_error(e, variables)
            raise
        finally:
            self.is_pending = False

        for prefix in self.invalidates:
            await self.client.invalidate_queries(prefix)

        if self.on_success:
            self.on_success(data, variables)
        return data
