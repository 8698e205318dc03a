# tannery/kinds/quote.py
from typing import Tuple

from tannery import schemas
from tannery.connectors.smtp_mailer import EmailMessage
from tannery.kinds.base import (
    BRAND_NAME, Record, RequestKind,
    button, esc, format_money, format_status, format_timestamp, signoff_html, signoff_text,
)


class QuoteKind(RequestKind):
    name = "quote"
    statuses = ("requested", "approved", "rejected", "paid", "dispatched", "cancelled")
    initial_status = "requested"
    shipped_status = "dispatched"
    shipped_at_field = "dispatched_at"
    tracking_fields = ("tracking_number", "tracking_link")
    required_fields = (
        "customer_name", "customer_email", "company_name", "destination_country",
        "quantity", "quantity_unit", "item_name", "item_type_category",
    )
    email_field = "customer_email"

    create_schema = schemas.QuoteRequestCreate
    update_schema = schemas.QuoteRequestUpdate

    created_notification_type = "new_quote_request"
    status_notification_type = "quote_status_update"

    search_fields = ("customer_name", "company_name", "item_name", "request_number")
    filter_fields = {
        "status": "status",
        "destination_country": "destination_country",
        "item_type_category": "item_type_category",
    }
    sort_fields = {
        "createdAt": "created_at",
        "created_at": "created_at",
        "updatedAt": "updated_at",
        "updated_at": "updated_at",
        "status": "status",
        "customerName": "customer_name",
        "customer_name": "customer_name",
        "companyName": "company_name",
        "company_name": "company_name",
        "itemName": "item_name",
        "item_name": "item_name",
        "proposedTotalPrice": "proposed_total_price",
        "proposed_total_price": "proposed_total_price",
        "requestNumber": "request_number",
        "request_number": "request_number",
    }
    transitions = {
        "requested": frozenset({"approved", "rejected", "cancelled"}),
        "approved": frozenset({"paid", "rejected", "cancelled"}),
        "paid": frozenset({"dispatched", "cancelled"}),
        "dispatched": frozenset(),
        "rejected": frozenset({"requested"}),
        "cancelled": frozenset({"requested"}),
    }

    portal_path = "customer/quotes"
    admin_path = "admin/quotes"

    # --- notifications
    def created_notification(self, record: Record) -> Tuple[str, str]:
        return (
            f"New Quote Request: {record['company_name']}",
            f"Quote for {record['item_name']} (Qty: {record['quantity']} {record['quantity_unit']}) "
            f"from {record['customer_name']} (Ref: {record['request_number']}) has been submitted.",
        )

    def status_notification(self, old: Record, new: Record) -> Tuple[str, str]:
        return (
            f"Quote Status Update: {new['request_number']}",
            f"Quote for {new['item_name']} from {new['company_name']} (Ref: {new['request_number']}) "
            f"status changed from {old['status']} to {new['status']}.",
        )

    def deleted_notification(self, record: Record) -> Tuple[str, str]:
        return (
            f"Quote Request Deleted: {record['request_number']}",
            f"Quote request (Ref: {record['request_number']}) for {record['item_name']} "
            f"from {record['company_name']} was deleted.",
        )

    def invoice_notification(self, record: Record) -> Tuple[str, str]:
        return (
            f"Invoice Sent: {record['invoice_id']}",
            f"Invoice {record['invoice_id']} for quote {record['request_number']} "
            f"has been sent to {record['company_name']}.",
        )

    # --- emails
    def creation_email(self, record: Record) -> EmailMessage:
        ref = record["request_number"]
        link = self.portal_link(record)
        qty = f"{record['quantity']} {record['quantity_unit']}"
        text = (
            f"Dear {record['customer_name']},\n\n"
            f"Thank you for your recent quote request ({record['item_name']}, Quantity: {qty}). "
            f"We have received your request (Reference: {ref}) and are currently reviewing it.\n\n"
            f"We will get back to you shortly with an update. "
            f"You can track the status of your request at: {link}"
            + signoff_text()
        )
        body = (
            f"<p>Dear {esc(record['customer_name'])},</p>"
            f"<p>Thank you for your recent quote request for <strong>{esc(record['item_name'])}</strong> "
            f"(Quantity: {esc(qty)}).</p>"
            f"<p>We have successfully received your request (Reference: <strong>{esc(ref)}</strong>) "
            f"and are now reviewing it.</p>"
            "<p>You can track the progress of your request at any time through your customer portal:</p>"
            + button(link, "View Your Quote Request")
            + signoff_html()
        )
        return EmailMessage(
            to=self.recipient(record),
            subject=f"{BRAND_NAME}: Your Quote Request (Ref: {ref}) Received",
            text=text,
            html=body,
        )

    def status_email(self, old: Record, new: Record) -> EmailMessage:
        ref = new["request_number"]
        item = new["item_name"]
        name = new["customer_name"]
        status = new["status"]
        comments = new.get("admin_comments")
        text_lines = []
        html_parts = [f"<p>Dear {esc(name)},</p>"]

        if status == "approved":
            subject = f'{BRAND_NAME}: Your Quote for "{item}" Has Been Approved! (Ref: {ref})'
            text_lines.append(
                f'We are pleased to inform you that your quote request for "{item}" (Reference: {ref}) '
                "has been approved! We've reviewed your requirements and are ready to proceed."
            )
            html_parts.append(
                f"<p>We are pleased to inform you that your quote request for <strong>{esc(item)}</strong> "
                f"(Reference: {esc(ref)}) has been <strong>approved</strong>!</p>"
            )
            if new.get("proposed_total_price") is not None:
                price = format_money(new["proposed_total_price"])
                text_lines.append(f"Proposed Total Price: {price}")
                html_parts.append(f"<p><strong>Proposed Total Price:</strong> {esc(price)}</p>")
        elif status == "rejected":
            subject = f'{BRAND_NAME}: Update on Your Quote Request for "{item}" (Ref: {ref})'
            text_lines.append(
                f'After careful consideration, we regret to inform you that your quote request for "{item}" '
                f"(Reference: {ref}) could not be approved at this time."
            )
            html_parts.append(
                f"<p>After careful consideration, we regret to inform you that your quote request for "
                f"<strong>{esc(item)}</strong> (Reference: {esc(ref)}) could not be approved at this time.</p>"
            )
            if comments:
                text_lines.append(f"Our comments: {comments}")
                html_parts.append(f"<p><strong>Our comments:</strong> {esc(comments)}</p>")
        elif status == "paid":
            invoice = (new.get("invoice_id") or "")[:8]
            subject = f"{BRAND_NAME}: Payment Confirmation for Invoice #{invoice}... (Ref: {ref})"
            text_lines.append(
                f'Thank you! We have received your payment for your quote request for "{item}" (Reference: {ref}). '
                "Your order is now confirmed and will proceed to the next stage."
            )
            html_parts.append(
                f"<p>Thank you! We have received your payment for your quote request for "
                f"<strong>{esc(item)}</strong> (Reference: {esc(ref)}). "
                "Your order is now confirmed and will proceed to the next stage.</p>"
            )
        elif status == "dispatched":
            subject = f'{BRAND_NAME}: Your Order for "{item}" Has Been Dispatched! (Ref: {ref})'
            text_lines.append(f'Great news! Your order for "{item}" (Reference: {ref}) has been dispatched.')
            html_parts.append(
                f"<p>Great news! Your order for <strong>{esc(item)}</strong> (Reference: {esc(ref)}) "
                "has been dispatched.</p>"
            )
            self._tracking_details(new, text_lines, html_parts)
            text_lines.append("We hope you enjoy your purchase!")
        elif status == "cancelled":
            subject = f'{BRAND_NAME}: Your Quote Request for "{item}" Has Been Cancelled (Ref: {ref})'
            text_lines.append(
                f'We regret to inform you that your quote request for "{item}" (Reference: {ref}) has been cancelled.'
            )
            html_parts.append(
                f"<p>We regret to inform you that your quote request for <strong>{esc(item)}</strong> "
                f"(Reference: {esc(ref)}) has been cancelled.</p>"
            )
            if comments:
                text_lines.append(f"Reason: {comments}")
                html_parts.append(f"<p><strong>Reason:</strong> {esc(comments)}</p>")
            text_lines.append("If this was an error or you wish to discuss, please contact us.")
        else:
            subject = f'{BRAND_NAME}: Quote Request Status Update for "{item}" (Ref: {ref})'
            text_lines.append(
                f'The status of your quote request for "{item}" (Reference: {ref}) is now {format_status(status)}.'
            )
            html_parts.append(
                f"<p>The status of your quote request for <strong>{esc(item)}</strong> (Reference: {esc(ref)}) "
                f"is now <strong>{esc(format_status(status))}</strong>.</p>"
            )

        link = self.portal_link(new)
        text_lines.append(f"You can view the full details of your request here: {link}")
        html_parts.append("<p>You can view the full details of your request here:</p>")
        html_parts.append(button(link, "View Your Quote Request Details"))
        return EmailMessage(
            to=self.recipient(new),
            subject=subject,
            text=f"Dear {name},\n\n" + "\n\n".join(text_lines) + signoff_text(),
            html="".join(html_parts) + signoff_html(),
        )

    def tracking_email(self, record: Record) -> EmailMessage:
        ref = record["request_number"]
        item = record["item_name"]
        text_lines = [f'The shipping details for your order "{item}" (Reference: {ref}) have been updated.']
        html_parts = [
            f"<p>Dear {esc(record['customer_name'])},</p>",
            f"<p>The shipping details for your order <strong>{esc(item)}</strong> "
            f"(Reference: {esc(ref)}) have been updated.</p>",
        ]
        self._tracking_details(record, text_lines, html_parts)
        link = self.portal_link(record)
        text_lines.append(f"You can view the full details of your request here: {link}")
        html_parts.append(button(link, "View Your Quote Request Details"))
        return EmailMessage(
            to=self.recipient(record),
            subject=f'{BRAND_NAME}: Tracking Updated for Your Order "{item}" (Ref: {ref})',
            text=f"Dear {record['customer_name']},\n\n" + "\n\n".join(text_lines) + signoff_text(),
            html="".join(html_parts) + signoff_html(),
        )

    def invoice_email(self, record: Record) -> EmailMessage:
        ref = record["request_number"]
        item = record["item_name"]
        invoice = record["invoice_id"]
        link = self.portal_link(record)
        text_lines = [
            f'Your quote request for "{item}" (Reference: {ref}) has been approved, '
            f"and invoice #{invoice} has been issued."
        ]
        html_parts = [
            f"<p>Dear {esc(record['customer_name'])},</p>",
            f"<p>Your quote request for <strong>{esc(item)}</strong> (Reference: {esc(ref)}) has been approved, "
            f"and invoice #{esc(invoice)} has been issued.</p>",
        ]
        if record.get("proposed_total_price") is not None:
            total = format_money(record["proposed_total_price"])
            text_lines.append(f"Total Amount: {total}")
            html_parts.append(f"<p><strong>Total Amount:</strong> {esc(total)}</p>")
        if record.get("payment_method"):
            terms = format_status(record["payment_method"])
            text_lines.append(f"Payment Terms: {terms}")
            html_parts.append(f"<p><strong>Payment Terms:</strong> {esc(terms)}</p>")
        text_lines.append(f"Please proceed with payment from your portal: {link}")
        html_parts.append(button(link, "Proceed to Payment"))
        return EmailMessage(
            to=self.recipient(record),
            subject=f"{BRAND_NAME}: Invoice {invoice} for Your Quote Request (Ref: {ref})",
            text=f"Dear {record['customer_name']},\n\n" + "\n\n".join(text_lines) + signoff_text(),
            html="".join(html_parts) + signoff_html(),
        )

    @staticmethod
    def _tracking_details(record: Record, text_lines, html_parts):
        if record.get("tracking_number"):
            text_lines.append(f"Tracking Number: {record['tracking_number']}")
            html_parts.append(f"<p><strong>Tracking Number:</strong> {esc(record['tracking_number'])}</p>")
        if record.get("tracking_link"):
            link = record["tracking_link"]
            text_lines.append(f"Tracking Link: {link}")
            html_parts.append(f'<p><strong>Tracking Link:</strong> <a href="{esc(link)}">{esc(link)}</a></p>')
        if record.get("dispatched_at"):
            stamp = format_timestamp(record["dispatched_at"])
            text_lines.append(f"Dispatched On: {stamp}")
            html_parts.append(f"<p><strong>Dispatched On:</strong> {esc(stamp)}</p>")


QUOTE = QuoteKind()
