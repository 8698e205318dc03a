# tannery/repositories/memory.py
"""In-memory repository useful for development and unit tests."""

import copy
import datetime
from typing import Any, Dict, List, Optional, Sequence

from tannery.errors import DuplicateKeyError
from tannery.models import utcnow
from tannery.repositories.base import Repository, new_id


class InMemoryRepository(Repository):
    def __init__(self, unique_fields: Sequence[str] = ("request_number",)) -> None:
        self._store: Dict[str, Dict[str, Any]] = {}
        self.unique_fields = tuple(unique_fields)

    def _matches(self, record, filters, search=None, search_fields=()):
        for key, value in filters.items():
            if record.get(key) != value:
                return False
        if search and search_fields:
            needle = search.lower()
            return any(needle in str(record.get(f) or "").lower() for f in search_fields)
        return True

    def _check_unique(self, record, ignore_id=None):
        for field in self.unique_fields:
            value = record.get(field)
            if value is None:
                continue
            for other in self._store.values():
                if other["id"] != ignore_id and other.get(field) == value:
                    raise DuplicateKeyError(f"Duplicate key on {field}", field=field)

    async def find_one(self, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for record in self._store.values():
            if self._matches(record, filters):
                return copy.deepcopy(record)
        return None

    async def find_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._store.get(record_id)
        return copy.deepcopy(record) if record else None

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record = copy.deepcopy(record)
        record.setdefault("id", new_id())
        now = utcnow()
        record.setdefault("created_at", now)
        record["updated_at"] = now
        self._check_unique(record)
        self._store[record["id"]] = record
        return copy.deepcopy(record)

    async def update_by_id(self, record_id: str, partial: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        current = self._store.get(record_id)
        if current is None:
            return None
        merged = dict(current)
        merged.update(copy.deepcopy(partial))
        merged["updated_at"] = utcnow()
        self._check_unique(merged, ignore_id=record_id)
        self._store[record_id] = merged
        return copy.deepcopy(merged)

    async def update_many(self, filters: Dict[str, Any], partial: Dict[str, Any]) -> int:
        matched = [r for r in self._store.values() if self._matches(r, filters)]
        now = utcnow()
        for record in matched:
            record.update(copy.deepcopy(partial))
            record["updated_at"] = now
        return len(matched)

    async def delete_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        return self._store.pop(record_id, None)

    async def delete_created_before(self, cutoff: datetime.datetime) -> int:
        stale = [rid for rid, r in self._store.items() if r["created_at"] < cutoff]
        for rid in stale:
            del self._store[rid]
        return len(stale)

    async def find(self, filters, *, search=None, search_fields=(), sort_by="created_at",
                   descending=True, skip=0, limit=10) -> List[Dict[str, Any]]:
        matched = [r for r in self._store.values() if self._matches(r, filters, search, search_fields)]
        # None sorts first ascending, last descending (matches SQLite)
        matched.sort(key=lambda r: (r.get(sort_by) is not None, r.get(sort_by)), reverse=descending)
        return [copy.deepcopy(r) for r in matched[skip:skip + limit]]

    async def count(self, filters, *, search=None, search_fields=()) -> int:
        return sum(1 for r in self._store.values() if self._matches(r, filters, search, search_fields))
