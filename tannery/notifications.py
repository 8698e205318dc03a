# tannery/notifications.py
"""
Staff notification records: created by the lifecycle engine, read and
acknowledged from the admin dashboard, purged by a retention cron.
"""

import datetime
import math
from typing import Any, Dict, Optional

from tannery import monitoring
from tannery.errors import NotFoundError, ValidationError
from tannery.models import utcnow
from tannery.repositories.base import Repository

NOTIFICATION_TYPES = (
    "new_quote_request",
    "quote_status_update",
    "new_sample_request",
    "sample_status_update",
    "invoice_sent",
    "new_message",
    "new_custom_request",
    "payment_confirmed",
    "payment_failed",
    "payment_received",
    "info",
    "warning",
    "error",
    "success",
)

# public sort key -> column
SORT_FIELDS = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "read": "read",
    "type": "type",
    "title": "title",
}

SEARCH_FIELDS = ("title", "message")


class NotificationService:
    def __init__(self, repository: Repository):
        self.repository = repository

    async def create_notification(
        self,
        title: str,
        message: str,
        type: str = "info",
        link: Optional[str] = None,
        related_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if type not in NOTIFICATION_TYPES:
            raise ValidationError(errors=[{"path": "type", "message": f"unknown notification type {type!r}"}])
        if not title or not message:
            raise ValidationError(errors=[{"path": "title" if not title else "message", "message": "required"}])
        record = await self.repository.insert({
            "title": title.strip(),
            "message": message.strip(),
            "type": type,
            "read": False,
            "link": link,
            "related_id": related_id,
        })
        monitoring.logger.info("Notification created", extra={"notification_id": record["id"], "type": type})
        return record

    async def list(
        self,
        read: Optional[bool] = None,
        type: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "created_at",
        order: str = "desc",
    ) -> Dict[str, Any]:
        filters: Dict[str, Any] = {}
        if read is not None:
            filters["read"] = read
        if type and type != "all":
            filters["type"] = type
        column = SORT_FIELDS.get(sort_by)
        descending = order != "asc"
        if column is None:
            monitoring.logger.warning("Unknown notification sort field, using created_at", extra={"sort_by": sort_by})
            column, descending = "created_at", True
        page = max(page, 1)
        limit = max(limit, 1)
        items = await self.repository.find(
            filters,
            search=search,
            search_fields=SEARCH_FIELDS,
            sort_by=column,
            descending=descending,
            skip=(page - 1) * limit,
            limit=limit,
        )
        total = await self.repository.count(filters, search=search, search_fields=SEARCH_FIELDS)
        unread = await self.repository.count({"read": False})
        return {
            "notifications": items,
            "total": total,
            "unread": unread,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    async def set_read(self, notification_id: str, read: bool = True) -> Dict[str, Any]:
        record = await self.repository.update_by_id(notification_id, {"read": read})
        if record is None:
            raise NotFoundError("Notification not found", {"id": notification_id})
        return record

    async def mark_all_read(self) -> int:
        updated = await self.repository.update_many({"read": False}, {"read": True})
        monitoring.logger.info("Marked notifications read", extra={"count": updated})
        return updated

    async def delete(self, notification_id: str) -> bool:
        return await self.repository.delete_by_id(notification_id) is not None

    async def delete_older_than(self, days: int) -> int:
        cutoff = utcnow() - datetime.timedelta(days=days)
        removed = await self.repository.delete_created_before(cutoff)
        monitoring.logger.info("Purged old notifications", extra={"count": removed, "days": days})
        return removed
