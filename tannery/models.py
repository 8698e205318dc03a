# tannery/models.py
from sqlalchemy import Boolean, Column, DateTime, Float, Integer, JSON, String, Text
import datetime

from tannery.db import Base


def utcnow() -> datetime.datetime:
    # naive UTC, SQLite drops tzinfo anyway
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class QuoteRequestRecord(Base):
    __tablename__ = "quote_requests"

    id = Column(String(32), primary_key=True)
    request_number = Column(String(8), unique=True, index=True, nullable=False)

    item_name = Column(String(200), nullable=False)
    item_id = Column(String(64), nullable=True)
    item_type_category = Column(String(32), nullable=False)

    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(100), nullable=False)
    company_name = Column(String(200), nullable=False)
    customer_phone = Column(String(20), nullable=True)
    destination_country = Column(String(64), nullable=False)

    quantity = Column(Integer, nullable=False)
    quantity_unit = Column(String(50), nullable=False)
    additional_comments = Column(Text, nullable=True)

    status = Column(String(32), nullable=False, index=True, default="requested")
    admin_comments = Column(Text, nullable=True)

    invoice_id = Column(String(64), nullable=True)
    proposed_price_per_unit = Column(Float, nullable=True)
    proposed_total_price = Column(Float, nullable=True)
    payment_method = Column(String(64), nullable=True)
    payment_details = Column(JSON, nullable=True)
    lc_details = Column(JSON, nullable=True)

    tracking_number = Column(String(100), nullable=True)
    tracking_link = Column(String(200), nullable=True)
    dispatched_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class SampleRequestRecord(Base):
    __tablename__ = "sample_requests"

    id = Column(String(32), primary_key=True)
    request_number = Column(String(8), unique=True, index=True, nullable=False)

    company_name = Column(String(100), nullable=False)
    contact_person = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False)
    phone = Column(String(20), nullable=True)
    country = Column(String(64), nullable=False)
    address = Column(String(500), nullable=False)
    urgency = Column(String(16), nullable=False, default="standard")

    sample_type = Column(String(32), nullable=False)
    quantity_samples = Column(String(64), nullable=True)
    material_preference = Column(String(100), nullable=True)
    finish_type = Column(String(100), nullable=True)
    color_preferences = Column(String(200), nullable=True)
    specific_requests = Column(Text, nullable=True)
    business_type = Column(String(32), nullable=True)
    intended_use = Column(String(32), nullable=True)
    future_volume = Column(String(32), nullable=True)

    product_id = Column(String(64), nullable=True)
    product_name = Column(String(200), nullable=True)
    product_type_category = Column(String(32), nullable=True)

    shipping_fee = Column(Float, nullable=True)
    status = Column(String(32), nullable=False, index=True, default="pending")
    admin_comments = Column(Text, nullable=True)
    payment_error = Column(JSON, nullable=True)

    tracking_link = Column(String(200), nullable=True)
    shipped_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class NotificationRecord(Base):
    __tablename__ = "notifications"

    id = Column(String(32), primary_key=True)
    title = Column(String(300), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, default="info", index=True)
    read = Column(Boolean, nullable=False, default=False, index=True)
    link = Column(String(300), nullable=True)
    related_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
