# tannery/schemas.py
from typing import Any, Dict, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
URL_PATTERN = r"^https?://\S+$"

Country = Literal[
    "United States", "United Kingdom", "Canada", "Australia", "Germany",
    "France", "Japan", "China", "India", "Brazil", "Argentina",
    "South Africa", "Nigeria", "Mexico", "Italy", "Spain", "South Korea",
    "Egypt", "Other",
]
COUNTRIES = get_args(Country)

QuoteStatus = Literal["requested", "approved", "rejected", "paid", "dispatched", "cancelled"]
SampleStatus = Literal["pending", "paid", "processing", "shipped", "delivered", "cancelled", "failed", "refunded"]
ItemTypeCategory = Literal["finished-product", "raw-leather", "custom"]
PaymentMethod = Literal["100_advance_bank_transfer", "30_70_split_bank_transfer", "letter_of_credit"]
SampleType = Literal["raw-leather", "finished-products", "both"]


def _blank_to_none(v):
    # form inputs post "" for cleared fields
    if isinstance(v, str) and not v.strip():
        return None
    return v


class _Form(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# --- Quote requests
class LcDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: Optional[Literal["initiated", "confirmed", "rejected", "completed"]] = None
    bank_name: Optional[str] = Field(None, max_length=200)
    lc_number: Optional[str] = Field(None, max_length=100)


class QuoteRequestCreate(_Form):
    item_name: str = Field(..., min_length=1, max_length=200)
    item_id: Optional[str] = None
    item_type_category: ItemTypeCategory
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    company_name: str = Field(..., min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    destination_country: Country
    quantity: int = Field(..., ge=1)
    quantity_unit: str = Field(..., min_length=1, max_length=50)
    additional_comments: Optional[str] = Field(None, max_length=1000)

    @field_validator("customer_email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator("customer_phone", "additional_comments", "item_id", mode="before")
    @classmethod
    def optional_blank(cls, v):
        return _blank_to_none(v)


class QuoteRequestUpdate(_Form):
    """Admin edit. Every field is optional; only fields present in the body are applied."""

    status: Optional[QuoteStatus] = None
    admin_comments: Optional[str] = Field(None, max_length=1000)
    customer_name: Optional[str] = Field(None, min_length=1, max_length=100)
    customer_email: Optional[str] = Field(None, max_length=100, pattern=EMAIL_PATTERN)
    company_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_phone: Optional[str] = Field(None, max_length=20)
    destination_country: Optional[Country] = None
    quantity: Optional[int] = Field(None, ge=1)
    quantity_unit: Optional[str] = Field(None, min_length=1, max_length=50)
    proposed_price_per_unit: Optional[float] = Field(None, ge=0)
    proposed_total_price: Optional[float] = Field(None, ge=0)
    payment_method: Optional[PaymentMethod] = None
    payment_details: Optional[Dict[str, Any]] = None
    lc_details: Optional[LcDetails] = None
    tracking_number: Optional[str] = Field(None, max_length=100)
    tracking_link: Optional[str] = Field(None, max_length=200, pattern=URL_PATTERN)

    @field_validator("quantity", "proposed_price_per_unit", "proposed_total_price", mode="before")
    @classmethod
    def empty_numeric(cls, v):
        return _blank_to_none(v)

    @field_validator("tracking_number", "tracking_link", "payment_method", "customer_phone", mode="before")
    @classmethod
    def empty_text(cls, v):
        return _blank_to_none(v)


class InvoiceAttach(_Form):
    invoice_id: str = Field(..., min_length=1, max_length=64)
    proposed_price_per_unit: Optional[float] = Field(None, gt=0)
    proposed_total_price: Optional[float] = Field(None, gt=0)
    payment_method: Optional[PaymentMethod] = None

    @field_validator("proposed_price_per_unit", "proposed_total_price", "payment_method", mode="before")
    @classmethod
    def empty_optional(cls, v):
        return _blank_to_none(v)


# --- Sample requests
class PaymentError(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None


class SampleRequestCreate(_Form):
    company_name: str = Field(..., min_length=1, max_length=100)
    contact_person: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., max_length=100, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    country: Country
    address: str = Field(..., min_length=1, max_length=500)
    urgency: Literal["standard", "express", "rush"] = "standard"
    sample_type: SampleType
    quantity_samples: Optional[str] = Field(None, max_length=64)
    material_preference: Optional[str] = Field(None, max_length=100)
    finish_type: Optional[str] = Field(None, max_length=100)
    color_preferences: Optional[str] = Field(None, max_length=200)
    specific_requests: Optional[str] = Field(None, max_length=1000)
    business_type: Literal["wholesaler", "retailer", "manufacturer", "distributor", "designer", "other"] = "other"
    intended_use: Literal["production", "resale", "testing", "development", "other"] = "other"
    future_volume: Literal["small", "medium", "large", "ongoing", "unsure"] = "unsure"
    product_id: Optional[str] = None
    product_name: Optional[str] = Field(None, max_length=200)
    product_type_category: Optional[Literal["finished-product", "raw-leather"]] = None
    shipping_fee: Optional[float] = Field(None, ge=0)
    # checkout creates the record already paid
    status: Optional[Literal["pending", "paid"]] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v):
        return v.lower()

    @field_validator(
        "phone", "quantity_samples", "material_preference", "finish_type",
        "color_preferences", "specific_requests", "product_id", "product_name",
        "shipping_fee", mode="before",
    )
    @classmethod
    def optional_blank(cls, v):
        return _blank_to_none(v)


class SampleRequestUpdate(_Form):
    status: Optional[SampleStatus] = None
    admin_comments: Optional[str] = Field(None, max_length=1000)
    contact_person: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[str] = Field(None, max_length=100, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, min_length=1, max_length=500)
    urgency: Optional[Literal["standard", "express", "rush"]] = None
    shipping_fee: Optional[float] = Field(None, ge=0)
    payment_error: Optional[PaymentError] = None
    tracking_link: Optional[str] = Field(None, max_length=200, pattern=URL_PATTERN)

    @field_validator("shipping_fee", mode="before")
    @classmethod
    def empty_numeric(cls, v):
        return _blank_to_none(v)

    @field_validator("tracking_link", "phone", mode="before")
    @classmethod
    def empty_text(cls, v):
        return _blank_to_none(v)


# --- Notifications
class NotificationUpdate(_Form):
    read: bool = True
