# tannery/repositories/sql.py
import contextlib
import datetime
import functools
from typing import Any, Dict, List, Optional, Sequence

import anyio
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from tannery import db as dbmod
from tannery import monitoring
from tannery.errors import DuplicateKeyError, PersistenceError
from tannery.models import utcnow
from tannery.repositories.base import Repository, new_id


class SqlRepository(Repository):
    """SQLAlchemy-backed repository for one mapped model.

    The ORM is synchronous; each call runs in a worker thread so the event
    loop only ever awaits it.
    """

    def __init__(self, model):
        self.model = model
        self.table = model.__tablename__
        self._columns = [c.name for c in model.__table__.columns]
        self._unique = [c.name for c in model.__table__.columns if c.unique]

    # -- helpers ------------------------------------------------------------
    def _column(self, name: str):
        if name not in self._columns:
            raise ValueError(f"unknown field {name!r} for {self.table}")
        return getattr(self.model, name)

    def _to_dict(self, row) -> Dict[str, Any]:
        return {name: getattr(row, name) for name in self._columns}

    def _query(self, session, filters: Dict[str, Any], search: Optional[str] = None,
               search_fields: Sequence[str] = ()):
        q = session.query(self.model)
        for key, value in filters.items():
            q = q.filter(self._column(key) == value)
        if search and search_fields:
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            q = q.filter(or_(*[self._column(f).ilike(pattern, escape="\\") for f in search_fields]))
        return q

    @contextlib.contextmanager
    def _session(self):
        session = dbmod.SessionLocal()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            detail = str(e.orig)
            if "unique" not in detail.lower() and "duplicate" not in detail.lower():
                monitoring.logger.error("DB integrity error", extra={"table": self.table, "error": detail})
                raise PersistenceError("Storage operation failed", {"exception": detail}) from e
            field = next((name for name in self._unique if name in detail), None)
            raise DuplicateKeyError(f"Duplicate key on {self.table}", field=field) from e
        except SQLAlchemyError as e:
            session.rollback()
            monitoring.logger.error("DB error", extra={"table": self.table, "error": str(e)})
            raise PersistenceError("Storage operation failed", {"exception": str(e)}) from e
        finally:
            session.close()

    async def _run(self, fn, *args, **kwargs):
        return await anyio.to_thread.run_sync(functools.partial(fn, *args, **kwargs))

    # -- sync implementations ----------------------------------------------
    def _find_one(self, filters):
        with self._session() as session:
            row = self._query(session, filters).first()
            return self._to_dict(row) if row else None

    def _find_by_id(self, record_id):
        with self._session() as session:
            row = session.get(self.model, record_id)
            return self._to_dict(row) if row else None

    def _insert(self, record):
        record = dict(record)
        record.setdefault("id", new_id())
        now = utcnow()
        record.setdefault("created_at", now)
        record["updated_at"] = now
        with self._session() as session:
            row = self.model(**record)
            session.add(row)
            session.flush()
            return self._to_dict(row)

    def _update_by_id(self, record_id, partial):
        with self._session() as session:
            row = session.get(self.model, record_id)
            if row is None:
                return None
            for key, value in partial.items():
                self._column(key)
                setattr(row, key, value)
            row.updated_at = utcnow()
            session.flush()
            return self._to_dict(row)

    def _update_many(self, filters, partial):
        values = dict(partial)
        values["updated_at"] = utcnow()
        with self._session() as session:
            return self._query(session, filters).update(values, synchronize_session=False)

    def _delete_by_id(self, record_id):
        with self._session() as session:
            row = session.get(self.model, record_id)
            if row is None:
                return None
            removed = self._to_dict(row)
            session.delete(row)
            return removed

    def _delete_created_before(self, cutoff):
        with self._session() as session:
            q = session.query(self.model).filter(self.model.created_at < cutoff)
            return q.delete(synchronize_session=False)

    def _find(self, filters, search, search_fields, sort_by, descending, skip, limit):
        column = self._column(sort_by)
        with self._session() as session:
            q = self._query(session, filters, search, search_fields)
            q = q.order_by(column.desc() if descending else column.asc())
            rows = q.offset(skip).limit(limit).all()
            return [self._to_dict(r) for r in rows]

    def _count(self, filters, search, search_fields):
        with self._session() as session:
            return self._query(session, filters, search, search_fields).count()

    # -- async contract -----------------------------------------------------
    async def find_one(self, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._run(self._find_one, filters)

    async def find_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._find_by_id, record_id)

    async def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return await self._run(self._insert, record)

    async def update_by_id(self, record_id: str, partial: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._run(self._update_by_id, record_id, partial)

    async def update_many(self, filters: Dict[str, Any], partial: Dict[str, Any]) -> int:
        return await self._run(self._update_many, filters, partial)

    async def delete_by_id(self, record_id: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._delete_by_id, record_id)

    async def delete_created_before(self, cutoff: datetime.datetime) -> int:
        return await self._run(self._delete_created_before, cutoff)

    async def find(self, filters, *, search=None, search_fields=(), sort_by="created_at",
                   descending=True, skip=0, limit=10) -> List[Dict[str, Any]]:
        return await self._run(self._find, filters, search, search_fields, sort_by, descending, skip, limit)

    async def count(self, filters, *, search=None, search_fields=()) -> int:
        return await self._run(self._count, filters, search, search_fields)
