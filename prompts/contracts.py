"""
Extraction contract per document type: which prompt file, which fields are essential,
and how the user message is assembled (reference example, correction feedback).
"""
from __future__ import annotations

import json
import re
from typing import Any

from core.models import DocumentType, TenantContext
from core.schema import ExtractedPayload
from prompts import load_prompt

EXTRACTION_PROMPT_FILES: dict[DocumentType, str] = {
    DocumentType.INVOICE: "extraction_invoice.txt",
    DocumentType.CREDIT_NOTE: "extraction_credit_note.txt",
    DocumentType.PRO_FORMA: "extraction_pro_forma.txt",
    DocumentType.BILL: "extraction_bill.txt",
    DocumentType.RECEIPT: "extraction_receipt.txt",
    DocumentType.EXPENSE: "extraction_expense.txt",
    DocumentType.UNKNOWN: "extraction_invoice.txt",
}

# camelCase names; a document without these cannot be booked
ESSENTIAL_FIELDS: dict[DocumentType, tuple[str, ...]] = {
    DocumentType.INVOICE: ("totalAmount", "vendorName"),
    DocumentType.CREDIT_NOTE: ("totalAmount", "vendorName"),
    DocumentType.PRO_FORMA: ("totalAmount", "vendorName"),
    DocumentType.BILL: ("totalAmount", "supplierName"),
    DocumentType.RECEIPT: ("totalAmount", "merchantName"),
    DocumentType.EXPENSE: ("totalAmount", "merchantName"),
    DocumentType.UNKNOWN: ("totalAmount",),
}

# Referenced examples are trimmed to keep the prompt small
_EXAMPLE_DROP_KEYS = ("extractedText", "provenance", "confidence")


def classification_system_prompt() -> str:
    return load_prompt("classification_system.txt")


def classification_user_prompt(tenant: TenantContext) -> str:
    lines = ["## Tenant (the company we process documents for)"]
    lines.append(f"Company name: {tenant.company_name or 'unknown'}")
    lines.append(f"VAT number: {tenant.vat_number or 'unknown'}")
    if tenant.address:
        lines.append(f"Address: {tenant.address}")
    lines.append("")
    lines.append("Classify the attached document.")
    return "\n".join(lines)


def extraction_system_prompt(document_type: DocumentType) -> str:
    """Type-specific schema followed by the shared normalization rules."""
    return f"{load_prompt(EXTRACTION_PROMPT_FILES[document_type])}\n\n---\n\n{load_prompt('extraction_rules.txt')}"


def extraction_user_prompt(
    document_type: DocumentType,
    reference_example: dict[str, Any] | None = None,
    feedback: str | None = None,
) -> str:
    parts = [f"Extract the {document_type.value} data from the attached page image(s)."]
    if reference_example:
        example = {k: v for k, v in reference_example.items() if k not in _EXAMPLE_DROP_KEYS}
        parts += [
            "",
            "## Reference example",
            "A previously approved extraction for a document from the same vendor. Use it only as a "
            "layout and formatting hint; every value must come from the current document.",
            json.dumps(example, indent=2, ensure_ascii=False),
        ]
    if feedback:
        parts += ["", feedback]
    return "\n".join(parts)


def humanize_field(name: str) -> str:
    """'totalAmount' -> 'total amount'."""
    return re.sub(r"(?<!^)(?=[A-Z])", " ", name).lower()


def missing_essential_fields(payload: ExtractedPayload, document_type: DocumentType) -> list[str]:
    """Essential camelCase fields that are null or blank in payload."""
    content = payload.content()
    missing: list[str] = []
    for name in ESSENTIAL_FIELDS[document_type]:
        value = content.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(name)
    return missing
