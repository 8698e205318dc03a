# tannery/kinds/base.py
"""
Per-kind configuration for the lifecycle engine.

A kind names its statuses, the status that means "on its way to the
customer" (and the timestamp column that follows it), the fields that count
as tracking data, listing filters, and the wording of every notification and
customer email. The engine itself is kind-agnostic.

Env vars:
- PUBLIC_BASE_URL (default: http://localhost:3000): customer portal origin
- BRAND_NAME (default: PureGrain)
"""

import datetime
import html
import os
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Type

from pydantic import BaseModel

from tannery.connectors.smtp_mailer import EmailMessage

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/")
BRAND_NAME = os.getenv("BRAND_NAME", "PureGrain")

Record = Dict[str, Any]


# --- formatting helpers
def format_status(status: Optional[str]) -> str:
    if not status:
        return "N/A"
    return " ".join(word.capitalize() for word in status.replace("_", " ").split(" "))


def format_money(amount: float) -> str:
    return f"${amount:,.2f} USD"


def format_timestamp(value) -> str:
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value)
    return value.strftime("%b %d, %Y %H:%M")


def esc(value: Any) -> str:
    return html.escape(str(value if value is not None else ""))


def button(href: str, label: str) -> str:
    return (
        f'<p><a href="{esc(href)}" style="display: inline-block; padding: 10px 20px; '
        f'background-color: #007bff; color: white; text-decoration: none; border-radius: 5px;">'
        f"{esc(label)}</a></p>"
    )


def signoff_text() -> str:
    return f"\n\nBest regards,\nThe {BRAND_NAME} Team"


def signoff_html() -> str:
    return (
        "<br><p>If you have any questions, please feel free to contact us.</p>"
        f"<p>Best regards,<br>The {esc(BRAND_NAME)} Team</p>"
    )


class RequestKind:
    """Base class; subclasses fill in the attributes and message builders."""

    name: str = ""
    statuses: Tuple[str, ...] = ()
    initial_status: str = ""
    shipped_status: str = ""
    shipped_at_field: str = ""
    tracking_fields: Tuple[str, ...] = ()
    tracking_link_field: str = "tracking_link"
    # columns that may never be cleared by a partial update
    required_fields: Tuple[str, ...] = ()
    email_field: str = ""

    create_schema: Type[BaseModel] = BaseModel
    update_schema: Type[BaseModel] = BaseModel

    created_notification_type: str = ""
    status_notification_type: str = ""

    search_fields: Tuple[str, ...] = ()
    # query parameter -> column
    filter_fields: Mapping[str, str] = {}
    sort_fields: Mapping[str, str] = {}

    # allowed next statuses, enforced only in strict mode
    transitions: Mapping[str, FrozenSet[str]] = {}

    portal_path: str = ""
    admin_path: str = ""

    def portal_link(self, record: Record) -> str:
        return f"{PUBLIC_BASE_URL}/{self.portal_path}/{record['id']}"

    def admin_link(self, record: Record) -> str:
        return f"/{self.admin_path}/{record['id']}"

    def allows(self, old_status: str, new_status: str) -> bool:
        return new_status in self.transitions.get(old_status, frozenset())

    def recipient(self, record: Record) -> Optional[str]:
        return record.get(self.email_field)

    # --- notifications: each returns (title, message)
    def created_notification(self, record: Record) -> Tuple[str, str]:
        raise NotImplementedError

    def status_notification(self, old: Record, new: Record) -> Tuple[str, str]:
        raise NotImplementedError

    def deleted_notification(self, record: Record) -> Tuple[str, str]:
        raise NotImplementedError

    # --- customer emails
    def creation_email(self, record: Record) -> EmailMessage:
        raise NotImplementedError

    def status_email(self, old: Record, new: Record) -> EmailMessage:
        raise NotImplementedError

    def tracking_email(self, record: Record) -> EmailMessage:
        raise NotImplementedError

    def warnings(self, record: Record) -> list:
        """Soft problems the admin UI should surface; never blocks a write."""
        if record.get("status") == self.shipped_status and not record.get(self.tracking_link_field):
            return ["missing_tracking_link"]
        return []
