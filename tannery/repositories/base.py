# tannery/repositories/base.py
"""
Storage contract consumed by the lifecycle engine and the notification service.

Records travel as plain dicts keyed by column name. Filters are equality
matches on named fields; `search` is a case-insensitive substring match
OR-ed across `search_fields`.
"""

import abc
import datetime
import uuid
from typing import Any, Dict, List, Optional, Sequence


def new_id() -> str:
    return uuid.uuid4().hex


class Repository(abc.ABC):
    @abc.abstractmethod
    async def find_one(self, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def find_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Assign id and timestamps, persist, return the stored record.

        Raises DuplicateKeyError when a unique field collides.
        """

    @abc.abstractmethod
    async def update_by_id(self, record_id: str, partial: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Apply `partial` (None values clear the field); bump updated_at."""

    @abc.abstractmethod
    async def update_many(self, filters: Dict[str, Any], partial: Dict[str, Any]) -> int:
        ...

    @abc.abstractmethod
    async def delete_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        """Delete and return the removed record, or None if nothing matched."""

    @abc.abstractmethod
    async def delete_created_before(self, cutoff: datetime.datetime) -> int:
        ...

    @abc.abstractmethod
    async def find(
        self,
        filters: Dict[str, Any],
        *,
        search: Optional[str] = None,
        search_fields: Sequence[str] = (),
        sort_by: str = "created_at",
        descending: bool = True,
        skip: int = 0,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        ...

    @abc.abstractmethod
    async def count(
        self,
        filters: Dict[str, Any],
        *,
        search: Optional[str] = None,
        search_fields: Sequence[str] = (),
    ) -> int:
        ...
