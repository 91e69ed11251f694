"""
Pydantic schemas for extracted document payloads. Used by services, decision, pipeline.
Amounts are decimal strings ("1234.56"), never floats. Field aliases are camelCase,
matching the JSON the extraction prompts ask for.
"""
from __future__ import annotations

import math
from typing import Any, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic.alias_generators import to_camel

from core.models import DocumentType
from validation.amounts import normalize_amount, normalize_date, normalize_vat_rate
from validation.checksums import normalize_iban, normalize_vat_number

_MODEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


def _clamp_unit(v: Any) -> float:
    try:
        value = float(v)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and v.strip().lower() in ("", "null", "none", "n/a"):
        return None
    return v


def _scalar_text(v: Any) -> Any:
    """Numbers read into text fields (2024001 as an invoice number) become strings."""
    if isinstance(v, bool):
        return None
    if isinstance(v, float):
        if not math.isfinite(v):
            return None
        return str(int(v)) if v.is_integer() else str(v)
    if isinstance(v, int):
        return str(v)
    return _blank_to_none(v)


# ---------------------------------------------------------------------------
# Provenance
# ---------------------------------------------------------------------------


class FieldProvenance(BaseModel):
    """Where on the document a field was read from."""

    model_config = _MODEL_CONFIG

    page_number: int = 1
    source_text: str = ""
    field_confidence: float = 0.0

    @field_validator("page_number", mode="before")
    @classmethod
    def page_at_least_one(cls, v: Any) -> int:
        try:
            return max(1, int(v))
        except (TypeError, ValueError):
            return 1

    @field_validator("source_text", mode="before")
    @classmethod
    def source_text_str(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("field_confidence", mode="before")
    @classmethod
    def confidence_in_unit_range(cls, v: Any) -> float:
        return _clamp_unit(v)


# ---------------------------------------------------------------------------
# Line items and VAT breakdown
# ---------------------------------------------------------------------------


class LineItem(BaseModel):
    """Single line on a document."""

    model_config = _MODEL_CONFIG

    description: str | None = None
    quantity: str | None = None
    unit_price: str | None = None
    vat_rate: str | None = None
    total: str | None = Field(default=None, validation_alias=AliasChoices("total", "totalPrice", "price", "amount"))

    @field_validator("description", mode="before")
    @classmethod
    def description_text(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("quantity", "unit_price", "total", mode="before")
    @classmethod
    def amounts_normalized(cls, v: Any) -> str | None:
        return normalize_amount(_blank_to_none(v))

    @field_validator("vat_rate", mode="before")
    @classmethod
    def rate_normalized(cls, v: Any) -> str | None:
        return normalize_vat_rate(_blank_to_none(v))


class VatBreakdownEntry(BaseModel):
    """One row of a VAT summary table."""

    model_config = _MODEL_CONFIG

    rate: str | None = None
    base: str | None = None
    amount: str | None = None

    @field_validator("rate", mode="before")
    @classmethod
    def rate_normalized(cls, v: Any) -> str | None:
        return normalize_vat_rate(_blank_to_none(v))

    @field_validator("base", "amount", mode="before")
    @classmethod
    def amounts_normalized(cls, v: Any) -> str | None:
        return normalize_amount(_blank_to_none(v))


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

_AMOUNT_FIELDS = (
    "subtotal",
    "total_vat_amount",
    "total_amount",
    "amount",
    "vat_amount",
)
_DATE_FIELDS = ("issue_date", "due_date", "transaction_date", "date")
_VAT_NUMBER_FIELDS = (
    "vendor_vat_number",
    "client_vat_number",
    "supplier_vat_number",
    "merchant_vat_number",
)
# Fields that carry bookkeeping meaning rather than document content
META_FIELDS = frozenset({"confidence", "extractedText", "provenance"})


class _PayloadBase(BaseModel):
    """Fields shared by every payload: self-assessed confidence, raw transcription, provenance."""

    model_config = _MODEL_CONFIG

    confidence: float = 0.0
    extracted_text: str = ""
    provenance: dict[str, FieldProvenance] = Field(default_factory=dict)
    extraction_error: str | None = Field(default=None, exclude=True)

    @field_validator("confidence", mode="before")
    @classmethod
    def confidence_in_unit_range(cls, v: Any) -> float:
        return _clamp_unit(v)

    @field_validator("extracted_text", mode="before")
    @classmethod
    def text_str(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("provenance", mode="before")
    @classmethod
    def provenance_dict(cls, v: Any) -> Any:
        return v if isinstance(v, dict) else {}

    @classmethod
    def failed(cls, reason: str) -> Any:
        """Empty, zero-confidence sentinel returned when extraction could not produce data."""
        return cls(confidence=0.0, extraction_error=reason)

    @property
    def extraction_failed(self) -> bool:
        return self.extraction_error is not None

    def content(self) -> dict[str, Any]:
        """camelCase document fields without confidence/transcription/provenance."""
        data = self.model_dump(by_alias=True, mode="json")
        return {k: v for k, v in data.items() if k not in META_FIELDS}


def _normalize_common(v: Any, field_name: str) -> Any:
    v = _blank_to_none(v)
    if field_name in _AMOUNT_FIELDS:
        return normalize_amount(v)
    if field_name in _DATE_FIELDS:
        return normalize_date(v)
    if field_name in _VAT_NUMBER_FIELDS:
        v = _scalar_text(v)
        return normalize_vat_number(v) if isinstance(v, str) else v
    return v


class InvoicePayload(_PayloadBase):
    """Invoice, credit note and pro forma share this shape."""

    vendor_name: str | None = None
    vendor_vat_number: str | None = None
    vendor_address: str | None = None
    client_name: str | None = None
    client_vat_number: str | None = None
    client_address: str | None = None
    invoice_number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    currency: str | None = "EUR"
    subtotal: str | None = None
    vat_breakdown: list[VatBreakdownEntry] = Field(default_factory=list)
    total_vat_amount: str | None = None
    total_amount: str | None = None
    iban: str | None = None
    bic: str | None = None
    payment_reference: str | None = None
    # Credit notes only
    original_invoice_number: str | None = None
    credit_reason: str | None = None

    @field_validator(
        "vendor_name", "vendor_address", "client_name", "client_address", "invoice_number",
        "bic", "payment_reference", "original_invoice_number", "credit_reason", "currency",
        mode="before",
    )
    @classmethod
    def blanks_are_null(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator(
        "vendor_vat_number", "client_vat_number", "issue_date", "due_date",
        "subtotal", "total_vat_amount", "total_amount",
        mode="before",
    )
    @classmethod
    def normalized(cls, v: Any, info: ValidationInfo) -> Any:
        return _normalize_common(v, info.field_name)

    @field_validator("iban", mode="before")
    @classmethod
    def iban_normalized(cls, v: Any) -> str | None:
        v = _scalar_text(v)
        return normalize_iban(v) or None if isinstance(v, str) else v

    @field_validator("line_items", "vat_breakdown", mode="before")
    @classmethod
    def null_list_empty(cls, v: Any) -> Any:
        return v if isinstance(v, list) else []


class BillPayload(_PayloadBase):
    """Incoming supplier invoice."""

    supplier_name: str | None = None
    supplier_vat_number: str | None = None
    supplier_address: str | None = None
    invoice_number: str | None = None
    issue_date: str | None = None
    due_date: str | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    currency: str | None = "EUR"
    amount: str | None = None
    vat_amount: str | None = None
    vat_rate: str | None = None
    total_amount: str | None = None
    iban: str | None = Field(default=None, validation_alias=AliasChoices("iban", "bankAccount"))
    bic: str | None = None
    payment_reference: str | None = None
    category: str | None = None
    notes: str | None = None

    @field_validator(
        "supplier_name", "supplier_address", "invoice_number", "bic",
        "payment_reference", "category", "notes", "currency",
        mode="before",
    )
    @classmethod
    def blanks_are_null(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator(
        "supplier_vat_number", "issue_date", "due_date", "amount", "vat_amount", "total_amount",
        mode="before",
    )
    @classmethod
    def normalized(cls, v: Any, info: ValidationInfo) -> Any:
        return _normalize_common(v, info.field_name)

    @field_validator("vat_rate", mode="before")
    @classmethod
    def rate_normalized(cls, v: Any) -> str | None:
        return normalize_vat_rate(_blank_to_none(v))

    @field_validator("iban", mode="before")
    @classmethod
    def iban_normalized(cls, v: Any) -> str | None:
        v = _scalar_text(v)
        return normalize_iban(v) or None if isinstance(v, str) else v

    @field_validator("line_items", mode="before")
    @classmethod
    def null_list_empty(cls, v: Any) -> Any:
        return v if isinstance(v, list) else []


class ReceiptPayload(_PayloadBase):
    """Till receipt."""

    merchant_name: str | None = None
    merchant_vat_number: str | None = None
    merchant_address: str | None = None
    receipt_number: str | None = None
    transaction_date: str | None = None
    transaction_time: str | None = None
    items: list[LineItem] = Field(default_factory=list)
    currency: str | None = "EUR"
    subtotal: str | None = None
    vat_amount: str | None = None
    vat_breakdown: list[VatBreakdownEntry] = Field(default_factory=list)
    total_amount: str | None = None
    payment_method: str | None = None
    card_last_four: str | None = None
    category: str | None = None

    @field_validator(
        "merchant_name", "merchant_address", "receipt_number", "transaction_time",
        "payment_method", "card_last_four", "category", "currency",
        mode="before",
    )
    @classmethod
    def blanks_are_null(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator(
        "merchant_vat_number", "transaction_date", "subtotal", "vat_amount", "total_amount",
        mode="before",
    )
    @classmethod
    def normalized(cls, v: Any, info: ValidationInfo) -> Any:
        return _normalize_common(v, info.field_name)

    @field_validator("items", "vat_breakdown", mode="before")
    @classmethod
    def null_list_empty(cls, v: Any) -> Any:
        return v if isinstance(v, list) else []


class ExpensePayload(_PayloadBase):
    """Simple expense slip: parking ticket, taxi, small purchase."""

    merchant_name: str | None = None
    merchant_vat_number: str | None = None
    description: str | None = None
    date: str | None = None
    currency: str | None = "EUR"
    total_amount: str | None = None
    vat_amount: str | None = None
    vat_rate: str | None = None
    category: str | None = None
    payment_method: str | None = None
    reference: str | None = None

    @field_validator(
        "merchant_name", "description", "category", "payment_method", "reference", "currency",
        mode="before",
    )
    @classmethod
    def blanks_are_null(cls, v: Any) -> Any:
        return _scalar_text(v)

    @field_validator("merchant_vat_number", "date", "total_amount", "vat_amount", mode="before")
    @classmethod
    def normalized(cls, v: Any, info: ValidationInfo) -> Any:
        return _normalize_common(v, info.field_name)

    @field_validator("vat_rate", mode="before")
    @classmethod
    def rate_normalized(cls, v: Any) -> str | None:
        return normalize_vat_rate(_blank_to_none(v))


ExtractedPayload = Union[InvoicePayload, BillPayload, ReceiptPayload, ExpensePayload]

PAYLOAD_TYPES: dict[DocumentType, type[_PayloadBase]] = {
    DocumentType.INVOICE: InvoicePayload,
    DocumentType.CREDIT_NOTE: InvoicePayload,
    DocumentType.PRO_FORMA: InvoicePayload,
    DocumentType.BILL: BillPayload,
    DocumentType.RECEIPT: ReceiptPayload,
    DocumentType.EXPENSE: ExpensePayload,
    # Never audited: judgment rejects Unknown before it matters
    DocumentType.UNKNOWN: InvoicePayload,
}


def payload_class_for(document_type: DocumentType) -> type[_PayloadBase]:
    return PAYLOAD_TYPES[document_type]


def parse_payload(document_type: DocumentType, data: dict[str, Any]) -> ExtractedPayload:
    """Validate model JSON into the payload for document_type. Raises pydantic.ValidationError."""
    if isinstance(data.get("data"), dict):
        outer = data
        data = {**outer["data"]}
        for key in ("confidence", "extractedText", "provenance"):
            if key in outer and key not in data:
                data[key] = outer[key]
    return payload_class_for(document_type).model_validate(data)


def counterparty_of(payload: ExtractedPayload) -> tuple[str | None, str | None]:
    """(name, VAT number) of the company that issued the document."""
    if isinstance(payload, InvoicePayload):
        return payload.vendor_name, payload.vendor_vat_number
    if isinstance(payload, BillPayload):
        return payload.supplier_name, payload.supplier_vat_number
    return payload.merchant_name, payload.merchant_vat_number
