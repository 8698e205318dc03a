# tannery/lifecycle.py
"""
Request lifecycle engine.

One engine instance per request kind (quote, sample). Every mutation is
validated first, persisted second, and only then fans out to the staff
notification and the customer email through the side-effect dispatcher, so
a rejected or failed write never notifies anyone.

Env vars:
- STRICT_TRANSITIONS (default: false): reject status changes outside the
  kind's transition table instead of allowing any jump
"""

import math
import os
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from tannery import monitoring
from tannery.allocator import RequestNumberAllocator
from tannery.connectors.smtp_mailer import EmailMessage
from tannery.dispatcher import SideEffectDispatcher
from tannery.errors import (
    ConflictError, DuplicateKeyError, NotFoundError, PersistenceError, TransitionError, ValidationError,
)
from tannery.kinds.base import RequestKind
from tannery.kinds.quote import QuoteKind
from tannery.models import utcnow
from tannery.repositories.base import Repository
from tannery.schemas import InvoiceAttach

STRICT_TRANSITIONS = os.getenv("STRICT_TRANSITIONS", "false").lower() in ("1", "true", "yes")
MAX_INSERT_ATTEMPTS = 5
MAX_PAGE_SIZE = 100


class RequestLifecycleEngine:
    def __init__(
        self,
        kind: RequestKind,
        repository: Repository,
        notifier,
        mailer,
        dispatcher: Optional[SideEffectDispatcher] = None,
        allocator: Optional[RequestNumberAllocator] = None,
        strict: Optional[bool] = None,
    ):
        self.kind = kind
        self.repository = repository
        self.notifier = notifier
        self.mailer = mailer
        self.dispatcher = dispatcher or SideEffectDispatcher()
        self.allocator = allocator or RequestNumberAllocator(repository, kind.name)
        self.strict = STRICT_TRANSITIONS if strict is None else strict

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------
    def _validate(self, schema, payload, partial: bool = False) -> Dict[str, Any]:
        if isinstance(payload, BaseModel):
            model = payload
        else:
            if not isinstance(payload, Mapping):
                raise ValidationError(errors=[{"path": "", "message": "request body must be an object"}])
            try:
                model = schema.model_validate(dict(payload))
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e) from e
        return model.model_dump(exclude_unset=partial)

    def _check_required(self, changes: Dict[str, Any]):
        cleared = [f for f in self.kind.required_fields if f in changes and changes[f] is None]
        if cleared:
            raise ValidationError(errors=[{"path": f, "message": "field cannot be cleared"} for f in cleared])

    # ------------------------------------------------------------------
    # side effects
    # ------------------------------------------------------------------
    async def _notify(self, label: str, type: str, record: Dict[str, Any], build: Callable[[], tuple]):
        async def effect():
            title, message = build()
            await self.notifier.create_notification(
                title=title,
                message=message,
                type=type,
                link=self.kind.admin_link(record),
                related_id=record["id"],
            )

        await self.dispatcher.spawn(f"notification:{self.kind.name}:{label}:{record['request_number']}", effect)

    async def _email(self, label: str, record: Dict[str, Any], build: Callable[[], EmailMessage]):
        if not self.kind.recipient(record):
            monitoring.logger.warning(
                "No customer email on record, skipping email",
                extra={"kind": self.kind.name, "request_id": record["id"], "template": label},
            )
            return

        async def effect():
            await self.mailer.send_email(build())

        await self.dispatcher.spawn(f"email:{self.kind.name}:{label}:{record['request_number']}", effect)

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------
    async def _insert_with_number(self, data: Dict[str, Any]) -> Dict[str, Any]:
        for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
            number = await self.allocator.allocate()
            try:
                return await self.repository.insert({**data, "request_number": number})
            except DuplicateKeyError as e:
                if e.field not in (None, "request_number"):
                    raise
                monitoring.inc_collision(self.kind.name, "insert")
                monitoring.logger.warning(
                    "Request number taken at insert, re-allocating",
                    extra={"kind": self.kind.name, "attempt": attempt},
                )
        raise PersistenceError(
            "Could not allocate a unique request number", {"attempts": MAX_INSERT_ATTEMPTS}
        )

    async def create(self, payload) -> Dict[str, Any]:
        data = self._validate(self.kind.create_schema, payload)
        data["status"] = data.pop("status", None) or self.kind.initial_status
        record = await self._insert_with_number(data)

        monitoring.inc_created(self.kind.name)
        monitoring.logger.info(
            "Request created",
            extra={"kind": self.kind.name, "request_id": record["id"], "request_number": record["request_number"]},
        )
        await self._notify("created", self.kind.created_notification_type, record,
                           lambda: self.kind.created_notification(record))
        await self._email("created", record, lambda: self.kind.creation_email(record))
        return record

    async def list(
        self,
        filters: Optional[Dict[str, Any]] = None,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "created_at",
        order: str = "desc",
    ) -> Dict[str, Any]:
        filters = filters or {}
        query: Dict[str, Any] = {}
        for param, column in self.kind.filter_fields.items():
            value = filters.get(param)
            if value in (None, "", "all"):
                continue
            query[column] = value
        search = (filters.get("search") or "").strip() or None

        column = self.kind.sort_fields.get(sort_by)
        descending = order != "asc"
        if column is None:
            monitoring.logger.warning(
                "Unknown sort field, using created_at", extra={"kind": self.kind.name, "sort_by": sort_by}
            )
            column, descending = "created_at", True

        page = max(int(page), 1)
        limit = min(max(int(limit), 1), MAX_PAGE_SIZE)
        requests = await self.repository.find(
            query,
            search=search,
            search_fields=self.kind.search_fields,
            sort_by=column,
            descending=descending,
            skip=(page - 1) * limit,
            limit=limit,
        )
        total = await self.repository.count(query, search=search, search_fields=self.kind.search_fields)
        return {
            "requests": requests,
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def get_by_id(self, record_id: str) -> Dict[str, Any]:
        record = await self.repository.find_by_id(record_id)
        if record is None:
            raise NotFoundError(f"{self.kind.name.capitalize()} request not found", {"id": record_id})
        return record

    async def update(self, record_id: str, partial) -> Dict[str, Any]:
        changes = self._validate(self.kind.update_schema, partial, partial=True)
        self._check_required(changes)

        current = await self.get_by_id(record_id)
        old_status = current["status"]
        new_status = changes.get("status") or old_status
        status_changed = new_status != old_status
        changes.pop("status", None)

        if status_changed:
            if self.strict and not self.kind.allows(old_status, new_status):
                raise TransitionError(
                    f"Cannot move a {self.kind.name} request from {old_status} to {new_status}",
                    [{"path": "status", "message": f"transition {old_status} -> {new_status} not allowed"}],
                )
            changes["status"] = new_status
            shipped_at = self.kind.shipped_at_field
            if new_status == self.kind.shipped_status:
                if not current.get(shipped_at):
                    changes[shipped_at] = utcnow()
            elif old_status == self.kind.shipped_status:
                changes[shipped_at] = None

        tracking_changed = any(
            f in changes and changes[f] != current.get(f) for f in self.kind.tracking_fields
        )

        updated = await self.repository.update_by_id(record_id, changes)
        if updated is None:
            # deleted between the read and the write
            raise NotFoundError(f"{self.kind.name.capitalize()} request not found", {"id": record_id})

        if status_changed:
            monitoring.inc_transition(self.kind.name, old_status, new_status)
            monitoring.logger.info(
                "Request status changed",
                extra={"kind": self.kind.name, "request_id": record_id, "from": old_status, "to": new_status},
            )
            await self._notify("status", self.kind.status_notification_type, updated,
                               lambda: self.kind.status_notification(current, updated))
            await self._email(f"status_{new_status}", updated, lambda: self.kind.status_email(current, updated))
        elif (
            tracking_changed
            and updated["status"] == self.kind.shipped_status
            and any(updated.get(f) for f in self.kind.tracking_fields)
        ):
            await self._email("tracking", updated, lambda: self.kind.tracking_email(updated))

        for warning in self.warnings(updated):
            monitoring.logger.warning(
                "Request saved with warning",
                extra={"kind": self.kind.name, "request_id": record_id, "warning": warning},
            )
        return updated

    def warnings(self, record: Dict[str, Any]) -> List[str]:
        return self.kind.warnings(record)

    async def delete(self, record_id: str) -> bool:
        removed = await self.repository.delete_by_id(record_id)
        if removed is None:
            return False
        monitoring.logger.info(
            "Request deleted",
            extra={"kind": self.kind.name, "request_id": record_id, "request_number": removed["request_number"]},
        )
        await self._notify("deleted", "info", removed, lambda: self.kind.deleted_notification(removed))
        return True


class QuoteLifecycleEngine(RequestLifecycleEngine):
    kind: QuoteKind

    async def attach_invoice(
        self,
        record_id: str,
        invoice_id: str,
        proposed_price_per_unit: Optional[float] = None,
        proposed_total_price: Optional[float] = None,
        payment_method: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store an invoice reference on an approved quote. Status is left as is."""
        data = self._validate(InvoiceAttach, {
            "invoice_id": invoice_id,
            "proposed_price_per_unit": proposed_price_per_unit,
            "proposed_total_price": proposed_total_price,
            "payment_method": payment_method,
        })
        current = await self.get_by_id(record_id)
        if current["status"] != "approved":
            raise ValidationError(
                f"Invoice can only be attached to approved quotes. Current status: {current['status']}",
                [{"path": "status", "message": "quote must be approved"}],
            )
        if current.get("invoice_id"):
            raise ConflictError(
                "An invoice already exists for this quote request", {"invoice_id": current["invoice_id"]}
            )

        changes = {k: v for k, v in data.items() if v is not None}
        if "proposed_price_per_unit" in changes and "proposed_total_price" not in changes:
            changes["proposed_total_price"] = round(changes["proposed_price_per_unit"] * current["quantity"], 2)

        updated = await self.repository.update_by_id(record_id, changes)
        if updated is None:
            raise NotFoundError("Quote request not found", {"id": record_id})

        monitoring.logger.info(
            "Invoice attached", extra={"request_id": record_id, "invoice_id": updated["invoice_id"]}
        )
        await self._notify("invoice", "invoice_sent", updated, lambda: self.kind.invoice_notification(updated))
        await self._email("invoice", updated, lambda: self.kind.invoice_email(updated))
        return updated
