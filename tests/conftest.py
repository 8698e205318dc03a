# tests/conftest.py
"""
Shared fixtures. Environment is pinned before any tannery module is imported
(they read env vars at import time): side effects run inline, no SMTP host,
auth mocked, and a throwaway SQLite file instead of ./tannery.db.
"""
import os
import tempfile

os.environ["SIDE_EFFECTS_EAGER"] = "true"
os.environ["EMAIL_HOST"] = ""
os.environ["MOCK_AUTH"] = "true"
os.environ["STRICT_TRANSITIONS"] = "false"
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(tempfile.gettempdir(), "tannery_pytest.db")

import pytest

from tannery.dispatcher import SideEffectDispatcher
from tannery.errors import SideEffectError
from tannery.kinds.quote import QUOTE
from tannery.kinds.sample import SAMPLE
from tannery.lifecycle import QuoteLifecycleEngine, RequestLifecycleEngine
from tannery.repositories.memory import InMemoryRepository


class RecordingMailer:
    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_email(self, message):
        if self.fail:
            raise SideEffectError("smtp down")
        self.sent.append(message)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.created = []
        self.fail = fail

    async def create_notification(self, title, message, type="info", link=None, related_id=None):
        if self.fail:
            raise SideEffectError("notification store down")
        record = {"title": title, "message": message, "type": type, "link": link, "related_id": related_id}
        self.created.append(record)
        return record


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher():
    return SideEffectDispatcher(eager=True, retries=0, retry_delay=0)


@pytest.fixture
def quote_engine(mailer, notifier, dispatcher):
    return QuoteLifecycleEngine(QUOTE, InMemoryRepository(), notifier, mailer, dispatcher, strict=False)


@pytest.fixture
def sample_engine(mailer, notifier, dispatcher):
    return RequestLifecycleEngine(SAMPLE, InMemoryRepository(), notifier, mailer, dispatcher, strict=False)


@pytest.fixture
def quote_payload():
    return {
        "item_name": "Leather Wallet",
        "item_type_category": "finished-product",
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "company_name": "Acme Goods",
        "customer_phone": "+49 30 1234567",
        "destination_country": "Germany",
        "quantity": 100,
        "quantity_unit": "pieces",
        "additional_comments": "Black and tan, please.",
    }


@pytest.fixture
def sample_payload():
    return {
        "company_name": "Hide & Seek Ltd",
        "contact_person": "Sam Carter",
        "email": "Sam@Example.com",
        "country": "United Kingdom",
        "address": "1 Tanner Street, London",
        "sample_type": "raw-leather",
        "product_name": "Full Grain Cowhide",
        "shipping_fee": 25.0,
    }
