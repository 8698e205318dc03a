# tests/test_quote_lifecycle.py
"""
Quote request lifecycle against the in-memory repository, with recording
mailer/notifier fakes and an eager dispatcher.
"""
import asyncio

import pytest

from tannery.allocator import CODE_PATTERN
from tannery.dispatcher import SideEffectDispatcher
from tannery.errors import ConflictError, NotFoundError, PersistenceError, TransitionError, ValidationError
from tannery.kinds.quote import QUOTE
from tannery.lifecycle import QuoteLifecycleEngine
from tannery.repositories.memory import InMemoryRepository


def run(coro):
    return asyncio.run(coro)


def test_create_assigns_number_and_initial_status(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))

    assert CODE_PATTERN.match(quote["request_number"])
    assert quote["status"] == "requested"

    assert len(notifier.created) == 1
    note = notifier.created[0]
    assert note["type"] == "new_quote_request"
    assert note["title"] == "New Quote Request: Acme Goods"
    assert note["link"] == f"/admin/quotes/{quote['id']}"
    assert note["related_id"] == quote["id"]

    assert len(mailer.sent) == 1
    email = mailer.sent[0]
    assert email.to == "jane@example.com"
    assert quote["request_number"] in email.subject
    assert "Received" in email.subject
    assert f"/customer/quotes/{quote['id']}" in email.text


def test_invalid_create_persists_nothing(quote_engine, quote_payload, mailer, notifier):
    quote_payload["quantity"] = 0
    with pytest.raises(ValidationError) as exc:
        run(quote_engine.create(quote_payload))

    assert any(e["path"] == "quantity" for e in exc.value.errors)
    assert run(quote_engine.repository.count({})) == 0
    assert notifier.created == []
    assert mailer.sent == []


@pytest.mark.parametrize("field,value", [
    ("destination_country", "Atlantis"),
    ("customer_email", "not-an-email"),
    ("customer_name", ""),
])
def test_create_rejects_bad_contact_fields(quote_engine, quote_payload, field, value):
    quote_payload[field] = value
    with pytest.raises(ValidationError) as exc:
        run(quote_engine.create(quote_payload))
    assert exc.value.errors[0]["path"] == field


def test_create_rejects_missing_required_field(quote_engine, quote_payload):
    del quote_payload["company_name"]
    with pytest.raises(ValidationError):
        run(quote_engine.create(quote_payload))


def test_leather_wallet_approval_email_carries_price(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))

    updated = run(quote_engine.update(quote["id"], {"status": "approved", "proposed_total_price": 500}))

    assert updated["status"] == "approved"
    assert updated["proposed_total_price"] == 500
    assert len(notifier.created) == 2
    assert notifier.created[1]["type"] == "quote_status_update"
    assert notifier.created[1]["title"] == f"Quote Status Update: {quote['request_number']}"
    assert len(mailer.sent) == 2
    email = mailer.sent[1]
    assert "Has Been Approved" in email.subject
    assert "Leather Wallet" in email.subject
    assert "$500.00" in email.text
    assert "$500.00" in email.html
    assert quote["request_number"] in email.text


def test_same_status_update_has_no_side_effects(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "requested"}))
    run(quote_engine.update(quote["id"], {"admin_comments": "checked stock"}))

    assert len(notifier.created) == 1
    assert len(mailer.sent) == 1


def test_update_bumps_updated_at(quote_engine, quote_payload):
    quote = run(quote_engine.create(quote_payload))
    updated = run(quote_engine.update(quote["id"], {"admin_comments": "noted"}))
    assert updated["updated_at"] >= quote["updated_at"]
    assert updated["created_at"] == quote["created_at"]
    assert updated["request_number"] == quote["request_number"]


def test_rejected_email_includes_admin_comments(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "rejected", "admin_comments": "Out of stock"}))

    email = mailer.sent[-1]
    assert "Our comments: Out of stock" in email.text


def test_cancelled_email_includes_reason(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "cancelled", "admin_comments": "Customer request"}))

    email = mailer.sent[-1]
    assert "Has Been Cancelled" in email.subject
    assert "Reason: Customer request" in email.text


def test_dispatch_sets_and_clears_timestamp(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))

    dispatched = run(quote_engine.update(quote["id"], {
        "status": "dispatched",
        "tracking_number": "1Z999",
        "tracking_link": "https://track.example.com/1Z999",
    }))
    assert dispatched["dispatched_at"] is not None
    email = mailer.sent[-1]
    assert "Has Been Dispatched" in email.subject
    assert "Tracking Number: 1Z999" in email.text
    assert "Tracking Link: https://track.example.com/1Z999" in email.text
    assert "Dispatched On:" in email.text

    # unrelated edit keeps the timestamp
    again = run(quote_engine.update(quote["id"], {"admin_comments": "left warehouse"}))
    assert again["dispatched_at"] == dispatched["dispatched_at"]

    reverted = run(quote_engine.update(quote["id"], {"status": "paid"}))
    assert reverted["dispatched_at"] is None


def test_tracking_change_while_dispatched_sends_tracking_email(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "dispatched"}))
    notes_before, mails_before = len(notifier.created), len(mailer.sent)

    run(quote_engine.update(quote["id"], {"tracking_number": "TRK-42"}))

    assert len(notifier.created) == notes_before
    assert len(mailer.sent) == mails_before + 1
    email = mailer.sent[-1]
    assert "Tracking Updated" in email.subject
    assert "TRK-42" in email.text


def test_tracking_change_outside_dispatched_sends_nothing(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"tracking_number": "TRK-42"}))
    assert len(mailer.sent) == 1


def test_empty_string_numerics_become_none(quote_engine, quote_payload):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"proposed_price_per_unit": 4.5, "proposed_total_price": 450}))

    updated = run(quote_engine.update(quote["id"], {"proposed_price_per_unit": "", "proposed_total_price": ""}))

    assert updated["proposed_price_per_unit"] is None
    assert updated["proposed_total_price"] is None
    stored = run(quote_engine.get_by_id(quote["id"]))
    assert stored["proposed_price_per_unit"] is None
    assert stored["proposed_total_price"] is None


def test_required_field_cannot_be_cleared(quote_engine, quote_payload):
    quote = run(quote_engine.create(quote_payload))
    with pytest.raises(ValidationError):
        run(quote_engine.update(quote["id"], {"quantity": None}))


def test_update_unknown_id_raises_not_found(quote_engine, mailer, notifier):
    with pytest.raises(NotFoundError):
        run(quote_engine.update("does-not-exist", {"status": "approved"}))
    assert mailer.sent == []
    assert notifier.created == []


def test_invalid_update_leaves_record_untouched(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    with pytest.raises(ValidationError):
        run(quote_engine.update(quote["id"], {"status": "teleported"}))
    stored = run(quote_engine.get_by_id(quote["id"]))
    assert stored["status"] == "requested"
    assert len(mailer.sent) == 1


def test_downgrade_allowed_by_default(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "dispatched"}))
    back = run(quote_engine.update(quote["id"], {"status": "requested"}))
    assert back["status"] == "requested"
    assert back["dispatched_at"] is None
    assert "Status Update" in mailer.sent[-1].subject


def test_strict_mode_rejects_unlisted_transition(mailer, notifier, dispatcher, quote_payload):
    engine = QuoteLifecycleEngine(QUOTE, InMemoryRepository(), notifier, mailer, dispatcher, strict=True)
    quote = run(engine.create(quote_payload))

    with pytest.raises(TransitionError):
        run(engine.update(quote["id"], {"status": "dispatched"}))

    assert run(engine.get_by_id(quote["id"]))["status"] == "requested"
    assert len(mailer.sent) == 1
    assert run(engine.update(quote["id"], {"status": "approved"}))["status"] == "approved"


def test_delete_semantics(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))

    assert run(quote_engine.delete(quote["id"])) is True
    assert notifier.created[-1]["type"] == "info"
    assert quote["request_number"] in notifier.created[-1]["title"]
    assert len(mailer.sent) == 1

    notes = len(notifier.created)
    assert run(quote_engine.delete(quote["id"])) is False
    assert len(notifier.created) == notes
    with pytest.raises(NotFoundError):
        run(quote_engine.get_by_id(quote["id"]))


def test_mail_failure_does_not_fail_update(quote_engine, quote_payload, mailer, notifier):
    mailer.fail = True
    quote = run(quote_engine.create(quote_payload))
    updated = run(quote_engine.update(quote["id"], {"status": "approved"}))

    assert updated["status"] == "approved"
    assert [n["type"] for n in notifier.created] == ["new_quote_request", "quote_status_update"]


def test_html_body_escapes_customer_values(quote_engine, quote_payload, mailer):
    quote_payload["customer_name"] = "<b>Mallory</b>"
    run(quote_engine.create(quote_payload))
    email = mailer.sent[0]
    assert "&lt;b&gt;Mallory&lt;/b&gt;" in email.html
    assert "<b>Mallory</b>" in email.text


def test_attach_invoice_requires_approved(quote_engine, quote_payload):
    quote = run(quote_engine.create(quote_payload))
    with pytest.raises(ValidationError):
        run(quote_engine.attach_invoice(quote["id"], "INV-0001"))


def test_attach_invoice_flow(quote_engine, quote_payload, mailer, notifier):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "approved"}))

    updated = run(quote_engine.attach_invoice(
        quote["id"], "INV-0001", proposed_price_per_unit=5, payment_method="letter_of_credit"
    ))

    assert updated["status"] == "approved"
    assert updated["invoice_id"] == "INV-0001"
    assert updated["proposed_total_price"] == 500
    assert notifier.created[-1]["type"] == "invoice_sent"
    email = mailer.sent[-1]
    assert "Invoice INV-0001" in email.subject
    assert "Total Amount: $500.00 USD" in email.text
    assert "Payment Terms: Letter Of Credit" in email.text

    with pytest.raises(ConflictError):
        run(quote_engine.attach_invoice(quote["id"], "INV-0002"))


def test_attach_invoice_unknown_quote(quote_engine):
    with pytest.raises(NotFoundError):
        run(quote_engine.attach_invoice("missing", "INV-1"))


def test_paid_email_mentions_invoice(quote_engine, quote_payload, mailer):
    quote = run(quote_engine.create(quote_payload))
    run(quote_engine.update(quote["id"], {"status": "approved"}))
    run(quote_engine.attach_invoice(quote["id"], "abcdef1234567890"))
    run(quote_engine.update(quote["id"], {"status": "paid"}))

    assert "Invoice #abcdef12..." in mailer.sent[-1].subject


def test_list_filters_search_and_paging(quote_engine, quote_payload):
    for i in range(12):
        payload = dict(quote_payload, company_name=f"Company {i}")
        if i % 3 == 0:
            payload["destination_country"] = "Japan"
        run(quote_engine.create(payload))

    page = run(quote_engine.list({}, page=2, limit=5))
    assert page["total"] == 12
    assert page["total_pages"] == 3
    assert page["page"] == 2
    assert len(page["requests"]) == 5

    japan = run(quote_engine.list({"destination_country": "Japan", "status": "all"}))
    assert japan["total"] == 4

    found = run(quote_engine.list({"search": "company 11"}))
    assert [r["company_name"] for r in found["requests"]] == ["Company 11"]


def test_list_sorting_and_unknown_sort_field(quote_engine, quote_payload):
    for name in ("Bravo", "Alpha", "Charlie"):
        run(quote_engine.create(dict(quote_payload, customer_name=name)))

    asc = run(quote_engine.list({}, sort_by="customerName", order="asc"))
    assert [r["customer_name"] for r in asc["requests"]] == ["Alpha", "Bravo", "Charlie"]

    fallback = run(quote_engine.list({}, sort_by="password"))
    assert fallback["total"] == 3


def test_list_empty(quote_engine):
    result = run(quote_engine.list())
    assert result == {"requests": [], "total": 0, "page": 1, "limit": 10, "total_pages": 0}


class GatedMailer:
    """Holds every send until the test releases it."""

    def __init__(self):
        self.release = asyncio.Event()
        self.sent = []

    async def send_email(self, message):
        await self.release.wait()
        self.sent.append(message)


def test_create_and_update_return_before_background_email(quote_payload, notifier):
    async def scenario():
        mailer = GatedMailer()
        dispatcher = SideEffectDispatcher(eager=False, retries=0, retry_delay=0)
        engine = QuoteLifecycleEngine(QUOTE, InMemoryRepository(), notifier, mailer, dispatcher, strict=False)

        quote = await engine.create(quote_payload)
        sent_after_create = len(mailer.sent)
        updated = await engine.update(quote["id"], {"status": "approved"})
        sent_after_update = len(mailer.sent)

        mailer.release.set()
        await dispatcher.drain()
        return updated, sent_after_create, sent_after_update, mailer.sent

    updated, after_create, after_update, sent = run(scenario())
    assert updated["status"] == "approved"
    assert (after_create, after_update) == (0, 0)
    assert len(sent) == 2
    assert "Received" in sent[0].subject
    assert "Approved" in sent[1].subject


class FailingUpdateRepository(InMemoryRepository):
    fail_updates = False

    async def update_by_id(self, record_id, partial):
        if self.fail_updates:
            raise PersistenceError("Storage operation failed", {"exception": "disk full"})
        return await super().update_by_id(record_id, partial)


def test_failed_update_write_fires_nothing_and_keeps_record(quote_payload, mailer, notifier, dispatcher):
    repo = FailingUpdateRepository()
    engine = QuoteLifecycleEngine(QUOTE, repo, notifier, mailer, dispatcher, strict=False)
    quote = run(engine.create(quote_payload))
    mails, notes = len(mailer.sent), len(notifier.created)

    repo.fail_updates = True
    with pytest.raises(PersistenceError):
        run(engine.update(quote["id"], {"status": "approved", "admin_comments": "ok"}))

    assert len(mailer.sent) == mails
    assert len(notifier.created) == notes
    stored = run(engine.get_by_id(quote["id"]))
    assert stored["status"] == "requested"
    assert stored.get("admin_comments") is None


def test_blank_quantity_is_rejected_as_cleared_field(quote_engine, quote_payload):
    quote = run(quote_engine.create(quote_payload))
    with pytest.raises(ValidationError) as exc:
        run(quote_engine.update(quote["id"], {"quantity": ""}))
    assert exc.value.errors == [{"path": "quantity", "message": "field cannot be cleared"}]
    assert run(quote_engine.get_by_id(quote["id"]))["quantity"] == 100
