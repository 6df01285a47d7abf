import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from schoolboard.core.config import settings
from schoolboard.core.constants import ViewStateEnum
from schoolboard.query.hydration import DehydratedState


class ListParams(BaseModel):
    """Normalized URL state of a list page."""
    page: int = 1
    search: Optional[str] = None
    filters: Dict[str, Any] = {}

    def key_params(self) -> Dict[str, Any]:
        return {"page": self.page, "search": self.search, **self.filters}


class ListPage(BaseModel):
    """Raw fetch payload as cached: one page of rows and the total match count."""
    rows: List[Dict[str, Any]] = []
    count: int = 0
    scope_empty: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> "ListPage":
        if isinstance(data, ListPage):
            return data
        return cls.model_validate(data or {})


class DetailPage(BaseModel):
    record: Optional[Dict[str, Any]] = None
    scope_empty: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Any) -> "DetailPage":
        if isinstance(data, DetailPage):
            return data
        return cls.model_validate(data or {})


class Pagination(BaseModel):
    page: int
    per_page: int = Field(default_factory=lambda: settings.ITEMS_PER_PAGE)
    count: int
    total_pages: int
    has_previous: bool
    has_next: bool

    @classmethod
    def build(cls, page: int, count: int, per_page: Optional[int] = None) -> "Pagination":
        per_page = per_page or settings.ITEMS_PER_PAGE
        total_pages = math.ceil(count / per_page) if count else 0
        return cls(
            page=page,
            per_page=per_page,
            count=count,
            total_pages=total_pages,
            has_previous=page > 1,
            has_next=page < total_pages,
        )


class ListView(BaseModel):
    entity: str
    state: ViewStateEnum
    rows: List[Dict[str, Any]] = []
    pagination: Optional[Pagination] = None
    message: Optional[str] = None
    error: Optional[str] = None
    can_retry: bool = False
    can_mutate: bool = False
    is_fetching: bool = False


class DetailView(BaseModel):
    entity: str
    state: ViewStateEnum
    record: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None
    can_retry: bool = False
    can_mutate: bool = False


class ListPayload(BaseModel):
    view: ListView
    dehydrated_state: DehydratedState


class DetailPayload(BaseModel):
    view: DetailView
    dehydrated_state: DehydratedState
