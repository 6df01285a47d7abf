"""List and detail pages for every dashboard entity.

One controller serves all entities; the per-entity differences live in the
``ENTITIES`` registry and the planner's rule table. A page goes
URL params -> ``ListParams`` -> planner -> cache key -> executor -> view.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, Mapping, Optional, Tuple

from schoolboard.core.backend import DataBackend
from schoolboard.core.config import settings
from schoolboard.core.constants import ViewStateEnum
from schoolboard.core.exceptions import PermissionDeniedError, UnknownEntityError
from schoolboard.core.filters import Predicate, contains, eq, in_
from schoolboard.core.query_config import DOMAIN_LABELS, NOT_FOUND_MESSAGE
from schoolboard.query.client import FetchFn, QueryClient, QueryContext, QueryOptions
from schoolboard.query.hydration import DehydratedState, hydrate
from schoolboard.query.keys import CacheKey, query_keys
from schoolboard.query.mutation import Mutation
from schoolboard.query.observer import QueryObserver, QueryResult
from schoolboard.schemas.list import DetailPage, DetailView, ListPage, ListParams, ListView, Pagination
from schoolboard.services.entities import ENTITIES, EntitySpec
from schoolboard.services.scope import RoleScopePlanner, ScopeContext, scope_planner
from schoolboard.services.session import Session
from schoolboard.utils.permission import can_mutate

logger = logging.getLogger(__name__)


def to_list_page(data: Any) -> ListPage:
    return ListPage.from_payload(data)


def to_detail_page(data: Any) -> DetailPage:
    return DetailPage.from_payload(data)


def _parse_int(raw: Any) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def not_found_message(entity: str) -> str:
    return NOT_FOUND_MESSAGE.format(label=DOMAIN_LABELS.get(entity, entity))


class ListPageController:
    def __init__(
        self,
        client: QueryClient,
        backend: DataBackend,
        session: Session,
        planner: Optional[RoleScopePlanner] = None,
        options: Optional[QueryOptions] = None,
    ):
        self.client = client
        self.backend = backend
        self.planner = planner or scope_planner
        self.options = options or QueryOptions()
        self._session = session
        self._scope_ctx = ScopeContext(backend, session.scope)
        self._observers: Dict[Tuple[str, str], QueryObserver] = {}

    @property
    def session(self) -> Session:
        return self._session

    def set_session(self, session: Session):
        """Sign-in changes drop every memoized scope lookup."""
        self._session = session
        if not self._scope_ctx.belongs_to(session.scope):
            self._scope_ctx = ScopeContext(self.backend, session.scope)

    def entity(self, name: str) -> EntitySpec:
        spec = ENTITIES.get(name)
        if spec is None:
            raise UnknownEntityError(name)
        return spec

    # -- params and keys --------------------------------------------------

    def parse_params(self, entity: str, query: Mapping[str, Any]) -> ListParams:
        spec = self.entity(entity)

        page = _parse_int(query.get("page"))
        if page is None or page < 1:
            page = 1

        search = str(query.get("search") or "").strip() or None
        if not spec.search_columns:
            search = None

        filters = {}
        for field in spec.filter_fields:
            raw = query.get(field.name)
            if raw is None or not str(raw).strip():
                continue
            value = _parse_int(raw) if field.type is int else str(raw).strip()
            if value is not None:
                filters[field.name] = value
        return ListParams(page=page, search=search, filters=filters)

    def _identity(self) -> Dict[str, Any]:
        scope = self._scope_ctx.scope
        return {"role": scope.role, "user_id": scope.subject_id}

    def list_key(self, entity: str, params: ListParams) -> CacheKey:
        return query_keys[entity].list({**params.key_params(), **self._identity()})

    def parse_id(self, entity: str, raw_id: Any) -> Optional[Any]:
        spec = self.entity(entity)
        if spec.id_type is int:
            return _parse_int(raw_id)
        return str(raw_id) if raw_id not in (None, "") else None

    def detail_key(self, entity: str, record_id: Any) -> CacheKey:
        return query_keys[entity].detail(record_id, self._identity())

    # -- fetching ---------------------------------------------------------

    async def _base_filters(self, ctx: ScopeContext, spec: EntitySpec, params: ListParams) -> Optional[Tuple[Predicate, ...]]:
        """URL filters as predicates, or None when a filter can match nothing."""
        filters = []
        by_name = spec.filters_by_name
        for name, value in params.filters.items():
            field = by_name[name]
            if field.through is None:
                filters.append(eq(field.target, value))
                continue
            table, match_column, selected_column = field.through
            values = await ctx.values(table, selected_column, eq(match_column, value))
            if not values:
                return None
            filters.append(in_(field.target, values))

        if params.search:
            filters.append(contains(spec.search_columns, params.search))
        return tuple(filters)

    def list_fetcher(self, spec: EntitySpec, params: ListParams) -> FetchFn:
        ctx = self._scope_ctx
        per_page = settings.ITEMS_PER_PAGE

        async def fetch(context: QueryContext) -> Dict[str, Any]:
            base = await self._base_filters(ctx, spec, params)
            if base is None:
                return {"rows": [], "count": 0}

            effective = await self.planner.plan(spec.name, ctx, base)
            if effective.is_empty:
                return {"rows": [], "count": 0, "scope_empty": effective.empty_reason}

            start = (params.page - 1) * per_page
            response = await self.backend.select(
                spec.table,
                columns=spec.columns,
                filters=effective.filters,
                range=(start, start + per_page - 1),
                order=spec.order,
            )
            return {"rows": response.rows, "count": response.count}

        return fetch

    def detail_fetcher(self, spec: EntitySpec, record_id: Any) -> FetchFn:
        ctx = self._scope_ctx

        async def fetch(context: QueryContext) -> Dict[str, Any]:
            effective = await self.planner.plan(spec.name, ctx, (eq("id", record_id),))
            if effective.is_empty:
                return {"record": None, "scope_empty": effective.empty_reason}

            response = await self.backend.select(
                spec.table,
                columns=spec.detail_columns or spec.columns,
                filters=effective.filters,
                range=(0, 0),
            )
            return {"record": response.rows[0] if response.rows else None}

        return fetch

    # -- observing --------------------------------------------------------

    def _observe(self, slot: Tuple[str, str], key: CacheKey, fetch_fn: FetchFn, options: QueryOptions) -> QueryObserver:
        observer = self._observers.get(slot)
        if observer is None:
            observer = QueryObserver(self.client, key, fetch_fn, options)
            observer.mount()
            self._observers[slot] = observer
        else:
            observer.set_query(key, fetch_fn, options)
        return observer

    def observe(self, entity: str, query: Mapping[str, Any]) -> QueryObserver:
        """Point the entity's list observer at the page described by ``query``."""
        spec = self.entity(entity)
        params = self.parse_params(entity, query)
        options = replace(self.options, select=to_list_page)
        return self._observe((entity, "list"), self.list_key(entity, params), self.list_fetcher(spec, params), options)

    def observe_detail(self, entity: str, record_id: Any) -> QueryObserver:
        spec = self.entity(entity)
        options = replace(self.options, select=to_detail_page)
        return self._observe(
            (entity, "detail"), self.detail_key(entity, record_id), self.detail_fetcher(spec, record_id), options
        )

    async def load(self, entity: str, query: Mapping[str, Any]) -> ListView:
        observer = self.observe(entity, query)
        return self.render(entity, await observer.resolve())

    async def load_detail(self, entity: str, raw_id: Any) -> DetailView:
        record_id = self.parse_id(entity, raw_id)
        if record_id is None:
            return DetailView(entity=entity, state=ViewStateEnum.EMPTY, message=not_found_message(entity))
        observer = self.observe_detail(entity, record_id)
        return self.render_detail(entity, await observer.resolve())

    def hydrate(self, state: Optional[DehydratedState]) -> int:
        return hydrate(self.client, state)

    def close(self):
        for observer in self._observers.values():
            observer.destroy()
        self._observers.clear()

    # -- rendering --------------------------------------------------------

    def render(self, entity: str, result: QueryResult) -> ListView:
        common = {
            "entity": entity,
            "can_mutate": can_mutate(self._session.role, entity),
            "is_fetching": result.is_fetching,
            "error": str(result.error) if result.error else None,
            "can_retry": result.error is not None and not result.is_fetching,
        }
        page: Optional[ListPage] = result.data
        if page is None:
            if result.error is not None:
                return ListView(state=ViewStateEnum.ERROR, message=common["error"], **common)
            return ListView(state=ViewStateEnum.LOADING, **common)

        if page.scope_empty:
            return ListView(state=ViewStateEnum.EMPTY, message=page.scope_empty, **common)

        params = result.key.segment(2) or {}
        pagination = Pagination.build(params.get("page", 1), page.count) if page.count else None
        if not page.rows:
            return ListView(
                state=ViewStateEnum.EMPTY, message=not_found_message(entity), pagination=pagination, **common
            )
        return ListView(state=ViewStateEnum.TABLE, rows=page.rows, pagination=pagination, **common)

    def render_detail(self, entity: str, result: QueryResult) -> DetailView:
        common = {
            "entity": entity,
            "can_mutate": can_mutate(self._session.role, entity),
            "error": str(result.error) if result.error else None,
            "can_retry": result.error is not None and not result.is_fetching,
        }
        detail: Optional[DetailPage] = result.data
        if detail is None:
            if result.error is not None:
                return DetailView(state=ViewStateEnum.ERROR, message=common["error"], **common)
            return DetailView(state=ViewStateEnum.LOADING, **common)

        if detail.record is None:
            message = detail.scope_empty or not_found_message(entity)
            return DetailView(state=ViewStateEnum.EMPTY, message=message, **common)
        return DetailView(state=ViewStateEnum.TABLE, record=detail.record, **common)

    # -- mutations --------------------------------------------------------

    def _mutation(self, entity: str, fn) -> Mutation:
        if not can_mutate(self._session.role, entity):
            raise PermissionDeniedError(self._session.role, entity)
        return Mutation(fn, self.client, invalidates=[query_keys[entity].all])

    async def create(self, entity: str, values: Dict[str, Any]) -> Dict[str, Any]:
        spec = self.entity(entity)
        mutation = self._mutation(entity, lambda v: self.backend.insert(spec.table, v))
        record = await mutation.execute(values)
        logger.info(f"{self._session.role} {self._session.user_id} created {entity} {record.get('id')}")
        return record

    async def update(self, entity: str, raw_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        spec = self.entity(entity)
        record_id = self.parse_id(entity, raw_id)
        mutation = self._mutation(entity, lambda v: self.backend.update(spec.table, record_id, v))
        record = await mutation.execute(values)
        logger.info(f"{self._session.role} {self._session.user_id} updated {entity} {record_id}")
        return record

    async def delete(self, entity: str, raw_id: Any) -> bool:
        spec = self.entity(entity)
        record_id = self.parse_id(entity, raw_id)
        mutation = self._mutation(entity, lambda v: self.backend.delete(spec.table, v))
        deleted = await mutation.execute(record_id)
        logger.info(f"{self._session.role} {self._session.user_id} deleted {entity} {record_id}: {deleted}")
        return deleted
