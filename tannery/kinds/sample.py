# tannery/kinds/sample.py
from typing import List, Tuple

from tannery import schemas
from tannery.connectors.smtp_mailer import EmailMessage
from tannery.kinds.base import (
    BRAND_NAME, Record, RequestKind,
    button, esc, format_status, format_timestamp, signoff_html, signoff_text,
)

# per-status paragraph appended to the status-change email: (text, html)
STATUS_MESSAGES = {
    "pending": (
        "Your request is currently pending. We might need some additional information or it is "
        "awaiting manual review. Please check your portal for more details or contact us.",
        "<p>Your request is currently pending. We might need some additional information or it is "
        "awaiting manual review. Please check your portal for more details or contact us if you have "
        "any questions.</p>",
    ),
    "paid": (
        "We have received your payment. Your order is placed and we will begin processing it shortly.",
        "<p>We have received your payment. Your order is placed and we will begin processing it shortly.</p>",
    ),
    "processing": (
        "Your sample request is now being processed. We are preparing your samples for shipment.",
        "<p>Your sample request is now being processed. We are actively preparing your samples for shipment.</p>",
    ),
    "shipped": (
        "Your sample request has been shipped.",
        "<p>Your sample request has been <strong>SHIPPED</strong>!</p>",
    ),
    "delivered": (
        "Your sample request has been delivered. We hope you are satisfied with your samples.",
        "<p>Your sample request has been <strong>DELIVERED</strong>! We hope you are satisfied with your "
        "samples.</p><p>Please feel free to reach out if you have any feedback or further requirements.</p>",
    ),
    "cancelled": (
        "Your sample request has been cancelled. If you have any questions or this was an error, "
        "please contact us.",
        "<p>Your sample request has been <strong>CANCELLED</strong>. If you believe this is an error or wish "
        "to discuss this further, please do not hesitate to contact our support team.</p>",
    ),
    "failed": (
        "Your sample request payment has failed. Please check your payment method or contact us to "
        "resolve this issue.",
        "<p>We regret to inform you that the payment for your sample request has <strong>FAILED</strong>. "
        "Please check your payment method or contact our support team to resolve this issue and "
        "re-initiate your order.</p>",
    ),
    "refunded": (
        "Your sample request has been refunded. The refund should appear in your account within "
        "5-10 business days.",
        "<p>Your sample request has been <strong>REFUNDED</strong>. The refund amount should appear in "
        "your account within 5-10 business days, depending on your bank.</p>",
    ),
}

DEFAULT_STATUS_MESSAGE = (
    "Please check your customer portal for more details.",
    "<p>Please check your customer portal for more details.</p>",
)


class SampleKind(RequestKind):
    name = "sample"
    statuses = ("pending", "paid", "processing", "shipped", "delivered", "cancelled", "failed", "refunded")
    initial_status = "pending"
    shipped_status = "shipped"
    shipped_at_field = "shipped_at"
    tracking_fields = ("tracking_link",)
    required_fields = ("company_name", "contact_person", "email", "country", "address", "sample_type", "urgency")
    email_field = "email"

    create_schema = schemas.SampleRequestCreate
    update_schema = schemas.SampleRequestUpdate

    created_notification_type = "new_sample_request"
    status_notification_type = "sample_status_update"

    search_fields = ("company_name", "contact_person", "email", "request_number")
    filter_fields = {
        "status": "status",
        "country": "country",
        "sample_type": "sample_type",
    }
    sort_fields = {
        "createdAt": "created_at",
        "created_at": "created_at",
        "updatedAt": "updated_at",
        "updated_at": "updated_at",
        "status": "status",
        "companyName": "company_name",
        "company_name": "company_name",
        "contactPerson": "contact_person",
        "contact_person": "contact_person",
        "country": "country",
        "requestNumber": "request_number",
        "request_number": "request_number",
    }
    transitions = {
        "pending": frozenset({"paid", "cancelled", "failed"}),
        "paid": frozenset({"processing", "cancelled", "refunded"}),
        "processing": frozenset({"shipped", "cancelled", "refunded"}),
        "shipped": frozenset({"delivered", "refunded"}),
        "delivered": frozenset({"refunded"}),
        "failed": frozenset({"pending", "paid", "cancelled"}),
        "cancelled": frozenset({"refunded"}),
        "refunded": frozenset(),
    }

    portal_path = "customer/samples"
    admin_path = "admin/samples"

    def title(self, record: Record) -> str:
        return record.get("product_name") or record.get("sample_type") or "your sample request"

    # --- notifications
    def created_notification(self, record: Record) -> Tuple[str, str]:
        return (
            f"New Sample Request from {record['company_name']}",
            f"A new sample request (Ref: {record['request_number']}) has been received from "
            f"{record['contact_person']} ({record['email']}).",
        )

    def status_notification(self, old: Record, new: Record) -> Tuple[str, str]:
        return (
            f"Sample Status Update: {new['request_number']}",
            f"Sample request from {new['company_name']} status changed from {old['status']} to {new['status']}.",
        )

    def deleted_notification(self, record: Record) -> Tuple[str, str]:
        return (
            f"Sample Request Deleted: {record['company_name']}",
            f"Sample request (Ref: {record['request_number']}) from {record['contact_person']} was deleted.",
        )

    # --- emails
    def _header_html(self, record: Record) -> str:
        return (
            f"<p>Dear {esc(record.get('contact_person') or 'Customer')},</p>"
            f"<p>This is an update regarding your sample request for <strong>{esc(self.title(record))}</strong> "
            f"(Reference: <strong>{esc(record['request_number'])}</strong>).</p><br>"
        )

    def _footer_html(self, record: Record) -> str:
        return (
            "<p>You can view the full details of your request at any time:</p>"
            + button(self.portal_link(record), "View Your Sample Request Details")
            + signoff_html()
        )

    def _compose(self, record: Record, subject: str, text_lines: List[str], html_body: str) -> EmailMessage:
        text = (
            f"Dear {record.get('contact_person') or 'Customer'},\n\n"
            + "\n\n".join(text_lines)
            + f"\n\nView your request details: {self.portal_link(record)}"
            + signoff_text()
        )
        return EmailMessage(
            to=self.recipient(record),
            subject=subject,
            text=text,
            html=self._header_html(record) + html_body + self._footer_html(record),
        )

    def creation_email(self, record: Record) -> EmailMessage:
        ref = record["request_number"]
        title = self.title(record)
        if record.get("status") == "paid":
            return self._compose(
                record,
                f"{BRAND_NAME}: Your Sample Request Payment Confirmed & Order Placed (Ref: {ref})!",
                [
                    f'Thank you for your payment! We have successfully received your payment for your sample '
                    f'request for "{title}" (Ref: {ref}). Your order is now placed and we will begin '
                    "processing it shortly.",
                    "We will notify you once your samples are shipped.",
                ],
                "<p>Thank you for your payment! We have successfully received it for your sample request.</p>"
                f"<p>Your order for <strong>{esc(title)}</strong> (Reference: {esc(ref)}) is now placed, "
                "and we will begin processing it shortly.</p>"
                "<p>We will notify you as soon as your samples are shipped.</p>",
            )
        return self._compose(
            record,
            f"{BRAND_NAME}: Your Sample Request (Ref: {ref}) Received",
            [
                f'Thank you for your sample request for "{title}". We have received it (Ref: {ref}) '
                "and will review it shortly.",
                "We will contact you with the next steps, including payment of the shipping fee.",
            ],
            f"<p>Thank you for your sample request for <strong>{esc(title)}</strong>. "
            f"We have received it (Reference: {esc(ref)}) and will review it shortly.</p>"
            "<p>We will contact you with the next steps, including payment of the shipping fee.</p>",
        )

    def status_email(self, old: Record, new: Record) -> EmailMessage:
        ref = new["request_number"]
        title = self.title(new)
        previous = format_status(old.get("status"))
        current = format_status(new.get("status"))
        status_text, status_html = STATUS_MESSAGES.get(new.get("status"), DEFAULT_STATUS_MESSAGE)
        text_lines = [
            f'The status of your sample request for "{title}" (Ref: {ref}) has been updated '
            f"from {previous} to {current}.",
            status_text,
        ]
        html_body = (
            f"<p>The status of your sample request for <strong>{esc(title)}</strong> "
            f"(Reference: {esc(ref)}) has been updated:</p>"
            f"<ul><li><strong>Previous Status:</strong> {esc(previous)}</li>"
            f"<li><strong>New Status:</strong> {esc(current)}</li></ul>"
            + status_html
        )
        if new.get("status") == self.shipped_status:
            extra_text, extra_html = self._tracking_details(new)
            text_lines.extend(extra_text)
            html_body += extra_html
        return self._compose(
            new, f"{BRAND_NAME}: Status Update for Your Sample Request (Ref: {ref})", text_lines, html_body
        )

    def tracking_email(self, record: Record) -> EmailMessage:
        ref = record["request_number"]
        title = self.title(record)
        extra_text, extra_html = self._tracking_details(record)
        return self._compose(
            record,
            f'{BRAND_NAME}: Your Sample Order for "{title}" Has Been Shipped! (Ref: {ref})',
            [f'Great news! Your sample order for "{title}" (Ref: {ref}) has been shipped.']
            + extra_text
            + [f"We hope you enjoy your samples from {BRAND_NAME}."],
            f"<p>Great news! Your sample order for <strong>{esc(title)}</strong> (Reference: {esc(ref)}) "
            "has been shipped.</p><p>You can track its journey using the details below:</p>"
            + extra_html
            + f"<p>We hope you enjoy your samples from {esc(BRAND_NAME)}.</p>",
        )

    @staticmethod
    def _tracking_details(record: Record):
        text_lines, html = [], ""
        if record.get("tracking_link"):
            link = record["tracking_link"]
            text_lines.append(f"Tracking Link: {link}")
            html += f'<p><strong>Tracking Link:</strong> <a href="{esc(link)}" target="_blank">{esc(link)}</a></p>'
        if record.get("shipped_at"):
            stamp = format_timestamp(record["shipped_at"])
            text_lines.append(f"Shipped On: {stamp}")
            html += f"<p><strong>Shipped On:</strong> {esc(stamp)}</p>"
        return text_lines, html


SAMPLE = SampleKind()
