"""
Audit engine: deterministic checks over an extracted payload.
Pure and model-free. The registry lookup is done by the caller and passed in, so running
audit() twice on the same payload gives the same report.

Checks per document type:
- Invoice / credit note / proforma: totals math, line items, OGM, IBAN, VAT rate, company
- Bill: totals math (net + VAT = gross), line items, IBAN, VAT rate, company
- Receipt: totals math, items, VAT rate, company
- Expense: VAT vs total, VAT rate, company
Every failing check carries a hint phrased as an instruction for a re-extraction.
"""
from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher

from core.models import (
    AuditCheck,
    AuditReport,
    CheckType,
    CompanyLookup,
    DocumentType,
)
from core.schema import (
    BillPayload,
    ExpensePayload,
    ExtractedPayload,
    InvoicePayload,
    LineItem,
    ReceiptPayload,
    counterparty_of,
)
from validation.amounts import InvalidAmountError, format_amount, parse_amount
from validation.arithmetic import (
    verify_line_item,
    verify_line_items_sum,
    verify_totals,
    verify_vat_not_above_total,
)
from validation.checksums import (
    iban_problem,
    is_valid_belgian_vat,
    is_valid_ogm,
    normalize_iban,
    normalize_vat_number,
    ocr_suspects,
    ogm_check_digits,
    ogm_digits,
)
from validation.vat import verify_breakdown_rates, verify_implied_rate, verify_stated_rate

logger = logging.getLogger(__name__)

NAME_MATCH_THRESHOLD = 0.85

LEGAL_FORMS = (
    "bvba", "sprl", "bv", "srl", "nv", "sa", "vzw", "asbl", "commv", "scomm",
    "cv", "sc", "vof", "snc", "gcv", "ltd", "gmbh", "bvba/sprl",
)

# Bill lines that repeat an amount already inside another line
_INCLUDED_FEE_LINE = re.compile(r"\bincl\b|\(incl\.?\)|recupel|auvibel|bebat", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Checksums
# ---------------------------------------------------------------------------


def audit_iban(iban: str | None, field: str = "iban") -> AuditCheck:
    """mod-97 over the rearranged IBAN; BE must be 16 chars. Absent IBAN is skipped."""
    if not iban:
        return AuditCheck.skip(CheckType.CHECKSUM_IBAN, field, "No IBAN on document")
    normalized = normalize_iban(iban)
    problem = iban_problem(normalized)
    if problem is None:
        return AuditCheck.ok(CheckType.CHECKSUM_IBAN, field, "IBAN checksum valid", actual=normalized)
    hint = (
        "Re-read the IBAN character by character. Common OCR errors: 0<->O, 1<->I<->l, 8<->B, "
        "5<->S, 6<->G. A Belgian IBAN is BE + 2 check digits + 12 digits = 16 characters, "
        "e.g. BE68 5390 0754 7034."
    )
    if normalized.startswith("BE"):
        suspects = ocr_suspects(normalized)
        if suspects:
            hint += f" Suspicious characters: {', '.join(suspects)}."
    return AuditCheck.critical(
        CheckType.CHECKSUM_IBAN,
        field,
        f"IBAN {normalized} is invalid: {problem}",
        hint=hint,
        actual=normalized,
    )


def audit_ogm(reference: str | None, field: str = "paymentReference") -> AuditCheck:
    """Structured communication check digits. Free-text references are not checked."""
    if not reference:
        return AuditCheck.skip(CheckType.CHECKSUM_OGM, field, "No payment reference on document")
    digits = ogm_digits(reference)
    if digits is None:
        return AuditCheck.skip(
            CheckType.CHECKSUM_OGM, field, "Payment reference is free text, not a structured communication"
        )
    if is_valid_ogm(digits):
        return AuditCheck.ok(CheckType.CHECKSUM_OGM, field, "Structured communication checksum valid", actual=reference)
    expected = ogm_check_digits(digits[:10])
    return AuditCheck.critical(
        CheckType.CHECKSUM_OGM,
        field,
        f"Structured communication {reference} has check digits {digits[10:]}, expected {expected:02d}",
        hint=(
            "Re-read the structured communication (+++XXX/XXXX/XXXXX+++). It has exactly 12 digits; "
            "the last 2 are the first 10 modulo 97 (97 when the remainder is 0). "
            "Watch for 0<->O, 1<->I, 8<->B and 5<->S."
        ),
        expected=f"{expected:02d}",
        actual=digits[10:],
    )


# ---------------------------------------------------------------------------
# Company registry
# ---------------------------------------------------------------------------


def normalize_company_name(name: str) -> str:
    """Lowercase, strip punctuation and Belgian/EU legal forms."""
    n = name.lower().strip().replace(".", "")
    n = re.sub(r"[.,;:!@#$%^&*()\[\]{}|\\<>\"']", " ", n)
    n = re.sub(r"\s+", " ", n).strip()
    for form in LEGAL_FORMS:
        n = re.sub(rf"\b{re.escape(form)}\b", "", n)
    return re.sub(r"\s+", " ", n).strip()


def company_names_match(extracted: str, registered: str) -> bool:
    a, b = normalize_company_name(extracted), normalize_company_name(registered)
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    return SequenceMatcher(None, a, b).ratio() >= NAME_MATCH_THRESHOLD


def audit_company(
    name: str | None,
    vat_number: str | None,
    lookup: CompanyLookup,
    party: str,
) -> list[AuditCheck]:
    """CompanyExists and CompanyName. Both are warnings: registries miss valid foreign companies."""
    name_field, vat_field = f"{party}Name", f"{party}VatNumber"
    if not name and not vat_number:
        return [AuditCheck.skip(CheckType.COMPANY_EXISTS, vat_field, f"No {party} name or VAT number to look up")]
    if lookup.entry is None:
        hint = (
            f"Re-read the {party} VAT number. Belgian VAT numbers are BE followed by 10 digits "
            "starting with 0 or 1, e.g. BE0123456789."
        )
        normalized = normalize_vat_number(vat_number)
        if normalized and normalized.startswith("BE") and not is_valid_belgian_vat(normalized):
            hint += " The extracted number fails the Belgian enterprise-number checksum."
        return [
            AuditCheck.warning(
                CheckType.COMPANY_EXISTS,
                vat_field,
                f"{party.capitalize()} {vat_number or name} not found in business registry",
                hint=hint,
                actual=vat_number or name,
            )
        ]
    entry = lookup.entry
    checks = [
        AuditCheck.ok(
            CheckType.COMPANY_EXISTS,
            vat_field,
            f"{party.capitalize()} found in registry as {entry.name}",
            actual=entry.vat_number,
        )
    ]
    if not name:
        checks.append(AuditCheck.skip(CheckType.COMPANY_NAME, name_field, f"No {party} name to compare"))
    elif company_names_match(name, entry.name):
        checks.append(AuditCheck.ok(CheckType.COMPANY_NAME, name_field, "Name matches registry", expected=entry.name, actual=name))
    else:
        checks.append(
            AuditCheck.warning(
                CheckType.COMPANY_NAME,
                name_field,
                f"{party.capitalize()} name '{name}' does not match registry name '{entry.name}'",
                hint=(
                    f"Re-read the {party} name from the letterhead or the legal footer. "
                    f"The registry lists this VAT number as '{entry.name}'."
                ),
                expected=entry.name,
                actual=name,
            )
        )
    return checks


def _party_label(payload: ExtractedPayload) -> str:
    if isinstance(payload, InvoicePayload):
        return "vendor"
    if isinstance(payload, BillPayload):
        return "supplier"
    return "merchant"


def _is_cross_border(payload: ExtractedPayload) -> bool:
    _, vat = counterparty_of(payload)
    normalized = normalize_vat_number(vat)
    if isinstance(payload, InvoicePayload) and payload.client_vat_number:
        client = normalize_vat_number(payload.client_vat_number) or ""
        if client and not client.startswith("BE"):
            return True
    return bool(normalized) and not normalized.startswith("BE")


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


def _line_item_checks(items: list[LineItem], expected_raw: str | None, expected_field: str) -> list[AuditCheck]:
    if not items:
        return []
    checks = [verify_line_items_sum([i.total for i in items], expected_raw, expected_field=expected_field)]
    for index, item in enumerate(items, start=1):
        checks.append(verify_line_item(item.quantity, item.unit_price, item.total, index))
    return checks


# ---------------------------------------------------------------------------
# Per-type audits
# ---------------------------------------------------------------------------


def _audit_invoice(p: InvoicePayload, cross_border: bool) -> list[AuditCheck]:
    checks = [verify_totals(p.subtotal, p.total_vat_amount, p.total_amount)]
    checks += _line_item_checks(p.line_items, p.subtotal, "subtotal")
    checks.append(audit_ogm(p.payment_reference))
    checks.append(audit_iban(p.iban))
    breakdown = [e.rate for e in p.vat_breakdown if e.rate]
    if len(set(breakdown)) > 1:
        checks += verify_breakdown_rates(breakdown, cross_border=cross_border)
    else:
        checks.append(verify_implied_rate(p.subtotal, p.total_vat_amount, cross_border=cross_border))
    return checks


def _bill_net_amount(p: BillPayload) -> str | None:
    """Explicit net when it differs from the gross, else gross minus VAT."""
    try:
        amount = parse_amount(p.amount)
        total = parse_amount(p.total_amount)
        vat = parse_amount(p.vat_amount)
    except InvalidAmountError:
        return None
    if amount is not None and (total is None or amount != total):
        return format_amount(amount)
    if total is not None and vat is not None:
        return format_amount(total - vat)
    return None


def _audit_bill(p: BillPayload, cross_border: bool) -> list[AuditCheck]:
    try:
        amount_is_gross = p.amount is not None and parse_amount(p.amount) == parse_amount(p.total_amount)
    except InvalidAmountError:
        amount_is_gross = False
    if amount_is_gross:
        # Only a gross amount was printed; nothing independent to add up
        checks = [AuditCheck.skip(CheckType.MATH, "totalAmount", "Only the gross amount is printed")]
    else:
        checks = [verify_totals(p.amount, p.vat_amount, p.total_amount, net_field="amount", vat_field="vatAmount")]
    net = _bill_net_amount(p)
    booked_lines = [i for i in p.line_items if not _INCLUDED_FEE_LINE.search(i.description or "")]
    checks += _line_item_checks(booked_lines, net, "amount")
    checks.append(audit_ogm(p.payment_reference))
    checks.append(audit_iban(p.iban))
    checks.append(verify_implied_rate(net, p.vat_amount, cross_border=cross_border, vat_field="vatAmount"))
    if p.vat_rate:
        checks.append(verify_stated_rate(p.vat_rate, cross_border=cross_border))
    return checks


def _audit_receipt(p: ReceiptPayload, cross_border: bool) -> list[AuditCheck]:
    checks = [verify_totals(p.subtotal, p.vat_amount, p.total_amount, vat_field="vatAmount")]
    # Receipt item prices include VAT
    checks += _line_item_checks(p.items, p.total_amount, "totalAmount")
    breakdown = [e.rate for e in p.vat_breakdown if e.rate]
    if len(set(breakdown)) > 1:
        checks += verify_breakdown_rates(breakdown, cross_border=cross_border)
    else:
        checks.append(verify_implied_rate(p.subtotal, p.vat_amount, cross_border=cross_border, vat_field="vatAmount"))
    return checks


def _audit_expense(p: ExpensePayload, cross_border: bool) -> list[AuditCheck]:
    checks = [verify_vat_not_above_total(p.vat_amount, p.total_amount)]
    net: str | None = None
    try:
        total, vat = parse_amount(p.total_amount), parse_amount(p.vat_amount)
        if total is not None and vat is not None:
            net = format_amount(total - vat)
    except InvalidAmountError:
        net = None
    if net is not None:
        checks.append(verify_implied_rate(net, p.vat_amount, cross_border=cross_border, vat_field="vatAmount"))
    if p.vat_rate:
        checks.append(verify_stated_rate(p.vat_rate, cross_border=cross_border))
    return checks


class AuditEngine:
    """Stateless; one instance can be shared by concurrent pipeline runs."""

    def audit(
        self,
        payload: ExtractedPayload,
        document_type: DocumentType,
        company_lookup: CompanyLookup | None = None,
    ) -> AuditReport:
        """
        Run every applicable check. company_lookup is None when no registry is configured,
        in which case company checks are not run at all.
        """
        cross_border = _is_cross_border(payload)
        if isinstance(payload, InvoicePayload):
            checks = _audit_invoice(payload, cross_border)
        elif isinstance(payload, BillPayload):
            checks = _audit_bill(payload, cross_border)
        elif isinstance(payload, ReceiptPayload):
            checks = _audit_receipt(payload, cross_border)
        elif isinstance(payload, ExpensePayload):
            checks = _audit_expense(payload, cross_border)
        else:
            raise TypeError(f"No audit rules for payload type {type(payload).__name__}")
        if company_lookup is not None:
            name, vat = counterparty_of(payload)
            checks += audit_company(name, vat, company_lookup, _party_label(payload))
        report = AuditReport.from_checks(checks)
        logger.debug(
            "Audit %s status=%s passed=%s failed=%s",
            document_type.value,
            report.overall_status.value,
            report.passed_count,
            report.failed_count,
        )
        return report
