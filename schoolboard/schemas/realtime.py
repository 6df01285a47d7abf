from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from schoolboard.core.constants import ChangeTypeEnum
from schoolboard.core.query_config import TABLE_DOMAINS


class ChangeNotification(BaseModel):
    """Row change pushed by the backend's realtime webhook."""
    model_config = ConfigDict(populate_by_name=True)

    type: ChangeTypeEnum
    table: str
    db_schema: Optional[str] = Field(None, alias="schema")
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    @property
    def domain(self) -> Optional[str]:
        if self.table in TABLE_DOMAINS:
            return TABLE_DOMAINS[self.table]
        return TABLE_DOMAINS.get(self.table.capitalize())


class InvalidationResult(BaseModel):
    domain: Optional[str] = None
    invalidated: int = 0
