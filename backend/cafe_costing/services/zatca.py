"""ZATCA e-invoicing helpers.

Pure functions used by the tax invoice service: line tax, invoice numbers,
the chained invoice hash, the TLV QR payload and the UBL 2.1 XML body.
Nothing here touches the database.
"""

import base64
import hashlib
import io
import json
import re
import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import qrcode

from cafe_costing.core.config import settings
from cafe_costing.core.money import ZERO, money, to_decimal
from cafe_costing.db.base import as_utc

# QR TLV tags, in payload order
TAG_SELLER_NAME = 1
TAG_VAT_NUMBER = 2
TAG_TIMESTAMP = 3
TAG_TOTAL_WITH_VAT = 4
TAG_VAT_AMOUNT = 5
TAG_INVOICE_HASH = 6

TLV_FIELDS = {
    TAG_SELLER_NAME: "seller_name",
    TAG_VAT_NUMBER: "vat_number",
    TAG_TIMESTAMP: "timestamp",
    TAG_TOTAL_WITH_VAT: "total_with_vat",
    TAG_VAT_AMOUNT: "vat_amount",
    TAG_INVOICE_HASH: "invoice_hash",
}

INVOICE_TYPE_CODES = {
    "standard": "388",
    "simplified": "388",
    "credit_note": "381",
    "debit_note": "383",
}

# Transaction subtype attribute of InvoiceTypeCode
TRANSACTION_NAME_CODES = {"B2B": "0100000", "B2C": "0200000"}

PAYMENT_MEANS_CODES = {
    "cash": "10",
    "delivery": "10",
    "pos": "30",
    "card": "30",
    "stc": "30",
    "alinma": "30",
    "ur": "30",
    "barq": "30",
    "rajhi": "30",
    "qahwa-card": "48",
    "wallet": "48",
}
DEFAULT_PAYMENT_MEANS_CODE = "30"

VAT_NUMBER_PATTERN = re.compile(r"^3\d{13}3$")

UBL_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"
EXT_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonExtensionComponents-2"

ET.register_namespace("", UBL_NS)
ET.register_namespace("cac", CAC_NS)
ET.register_namespace("cbc", CBC_NS)
ET.register_namespace("ext", EXT_NS)


# ==================== VAT ====================

def validate_vat_number(vat_number: Optional[str]) -> bool:
    """15 digits, starting and ending with 3."""
    if not vat_number:
        return False
    return bool(VAT_NUMBER_PATTERN.match(vat_number.replace(" ", "")))


def format_vat_number(vat_number: str) -> str:
    """Group a VAT number as ``3XX XXXX XXXX XXXX`` for display."""
    cleaned = vat_number.replace(" ", "")
    if len(cleaned) != 15:
        return vat_number
    return f"{cleaned[0:3]} {cleaned[3:7]} {cleaned[7:11]} {cleaned[11:15]}"


def vat_from_total(total_with_vat, rate=None) -> Decimal:
    """VAT portion of a VAT-inclusive amount."""
    rate = to_decimal(settings.vat_rate if rate is None else rate)
    total = to_decimal(total_with_vat)
    return money(total - total / (1 + rate))


def total_with_vat(amount, rate=None) -> Decimal:
    rate = to_decimal(settings.vat_rate if rate is None else rate)
    return money(to_decimal(amount) * (1 + rate))


# ==================== TAX AND TOTALS ====================

def calculate_line_tax(
    unit_price, quantity, discount_amount=None, tax_rate=None
) -> Dict[str, Decimal]:
    """Taxable, tax and total amounts of one invoice line, each rounded."""
    rate = to_decimal(settings.vat_rate if tax_rate is None else tax_rate)
    taxable = to_decimal(unit_price) * to_decimal(quantity) - to_decimal(discount_amount)
    tax = taxable * rate
    return {
        "taxable_amount": money(taxable),
        "tax_amount": money(tax),
        "total_amount": money(taxable + tax),
    }


def build_invoice_lines(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Normalize submitted items and attach their per-line tax."""
    lines = []
    for item in items:
        rate = item.get("tax_rate")
        rate = to_decimal(settings.vat_rate if rate is None else rate)
        quantity = to_decimal(item.get("quantity") or 1)
        unit_price = to_decimal(item.get("unit_price"))
        discount = to_decimal(item.get("discount_amount"))
        tax = calculate_line_tax(unit_price, quantity, discount, rate)
        lines.append({
            "item_id": str(item.get("item_id") or ""),
            "name_ar": item.get("name_ar") or "منتج",
            "name_en": item.get("name_en") or "",
            "quantity": quantity,
            "unit_price": unit_price,
            "discount_amount": discount,
            "tax_rate": rate,
            **tax,
        })
    return lines


def sum_invoice_totals(lines: List[Dict[str, Any]]) -> Dict[str, Decimal]:
    """Invoice totals as sums of the already-rounded line values."""
    return {
        "subtotal": money(sum((line["unit_price"] * line["quantity"] for line in lines), ZERO)),
        "total_discount_amount": money(sum((line["discount_amount"] for line in lines), ZERO)),
        "taxable_amount": money(sum((line["taxable_amount"] for line in lines), ZERO)),
        "tax_amount": money(sum((line["tax_amount"] for line in lines), ZERO)),
        "total_amount": money(sum((line["total_amount"] for line in lines), ZERO)),
    }


def serialize_line(line: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-safe copy of an invoice line for storage."""
    return {
        key: float(value) if isinstance(value, Decimal) else value
        for key, value in line.items()
    }


# ==================== IDENTITY ====================

def invoice_type_code(invoice_type: str) -> str:
    return INVOICE_TYPE_CODES.get(invoice_type, "388")


def payment_means_code(payment_method: Optional[str]) -> str:
    return PAYMENT_MEANS_CODES.get((payment_method or "").lower(), DEFAULT_PAYMENT_MEANS_CODE)


def generate_invoice_number(counter: int, issued_at: datetime) -> str:
    """``INV-YYYYMMDD-NNNNNN``."""
    return f"INV-{issued_at.strftime('%Y%m%d')}-{counter:06d}"


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with millisecond precision, e.g. ``2024-05-01T09:30:00.123Z``.

    Naive datetimes are taken as UTC.
    """
    value = as_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def truncate_to_millis(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


# ==================== HASH CHAIN ====================

def canonical_invoice_data(
    uuid: str,
    invoice_number: str,
    invoice_counter: int,
    invoice_date: datetime,
    total_amount,
    tax_amount,
) -> str:
    """Deterministic JSON of the hashed invoice fields."""
    return json.dumps(
        {
            "uuid": uuid,
            "invoiceNumber": invoice_number,
            "invoiceCounter": invoice_counter,
            "invoiceDate": format_timestamp(invoice_date),
            "totalAmount": f"{money(total_amount):.2f}",
            "taxAmount": f"{money(tax_amount):.2f}",
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_invoice_hash(canonical_data: str, previous_hash: Optional[str] = None) -> str:
    """base64(SHA-256(previous_hash + canonical_data)); no prefix for the first invoice."""
    payload = f"{previous_hash or ''}{canonical_data}"
    return base64.b64encode(hashlib.sha256(payload.encode("utf-8")).digest()).decode("ascii")


# ==================== QR (TLV) ====================

def encode_tlv_field(tag: int, value: str) -> bytes:
    data = value.encode("utf-8")
    if len(data) > 255:
        raise ValueError(f"TLV value for tag {tag} exceeds 255 bytes")
    return bytes([tag, len(data)]) + data


def encode_tlv(
    seller_name: str,
    vat_number: str,
    timestamp: str,
    total_with_vat: str,
    vat_amount: str,
    invoice_hash: Optional[str] = None,
) -> str:
    """Base64 TLV QR payload. Tag 6 is only written when a hash is given."""
    fields = [
        (TAG_SELLER_NAME, seller_name),
        (TAG_VAT_NUMBER, vat_number),
        (TAG_TIMESTAMP, timestamp),
        (TAG_TOTAL_WITH_VAT, total_with_vat),
        (TAG_VAT_AMOUNT, vat_amount),
    ]
    if invoice_hash:
        fields.append((TAG_INVOICE_HASH, invoice_hash))
    return base64.b64encode(b"".join(encode_tlv_field(t, v) for t, v in fields)).decode("ascii")


def decode_tlv(payload: str) -> Dict[str, str]:
    """Recover the named fields of a base64 TLV payload, in tag order."""
    raw = base64.b64decode(payload)
    result: Dict[str, str] = {}
    offset = 0
    while offset < len(raw):
        if offset + 2 > len(raw):
            raise ValueError("Truncated TLV payload")
        tag, length = raw[offset], raw[offset + 1]
        end = offset + 2 + length
        if end > len(raw):
            raise ValueError(f"TLV value for tag {tag} runs past end of payload")
        name = TLV_FIELDS.get(tag, f"tag_{tag}")
        result[name] = raw[offset + 2:end].decode("utf-8")
        offset = end
    return result


def qr_png_data_url(payload: str) -> str:
    """Render a QR payload as a ``data:image/png;base64,...`` URL."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


# ==================== XML ====================

def _cbc(parent: ET.Element, tag: str, text: Any = None, **attrib) -> ET.Element:
    el = ET.SubElement(parent, f"{{{CBC_NS}}}{tag}", attrib)
    if text is not None:
        el.text = str(text)
    return el


def _cac(parent: ET.Element, tag: str) -> ET.Element:
    return ET.SubElement(parent, f"{{{CAC_NS}}}{tag}")


def _amount(parent: ET.Element, tag: str, value) -> ET.Element:
    return _cbc(parent, tag, f"{money(value):.2f}", currencyID=settings.currency)


def _tax_scheme(parent: ET.Element) -> None:
    _cbc(_cac(parent, "TaxScheme"), "ID", "VAT")


def _document_reference(parent: ET.Element, ref_id: str, binary: Optional[str] = None, uuid=None) -> None:
    ref = _cac(parent, "AdditionalDocumentReference")
    _cbc(ref, "ID", ref_id)
    if uuid is not None:
        _cbc(ref, "UUID", uuid)
    if binary is not None:
        attachment = _cac(ref, "Attachment")
        _cbc(attachment, "EmbeddedDocumentBinaryObject", binary, mimeCode="text/plain")


def _line_percent(item: Dict[str, Any]) -> Decimal:
    rate = item.get("tax_rate")
    return money(to_decimal(settings.vat_rate if rate is None else rate) * 100)


def _tax_category_id(percent: Decimal) -> str:
    """S for standard-rated, Z for zero-rated."""
    return "S" if percent > 0 else "Z"


def _tax_breakdown(items: List[Dict[str, Any]]) -> Dict[Decimal, tuple]:
    """(taxable, tax) per distinct line rate, in first-seen order."""
    groups: Dict[Decimal, list] = {}
    for item in items:
        group = groups.setdefault(_line_percent(item), [ZERO, ZERO])
        group[0] += to_decimal(item.get("taxable_amount"))
        group[1] += to_decimal(item.get("tax_amount"))
    return {percent: (taxable, tax) for percent, (taxable, tax) in groups.items()}


def generate_invoice_xml(invoice) -> str:
    """UBL 2.1 invoice document for a ``TaxInvoice`` row (or anything shaped like one)."""
    issued = format_timestamp(invoice.invoice_date)
    root = ET.Element(f"{{{UBL_NS}}}Invoice")

    _cbc(root, "ProfileID", "reporting:1.0")
    _cbc(root, "ID", invoice.invoice_number)
    _cbc(root, "UUID", invoice.uuid)
    _cbc(root, "IssueDate", issued[:10])
    _cbc(root, "IssueTime", issued[11:19])
    _cbc(
        root,
        "InvoiceTypeCode",
        invoice.invoice_type_code,
        name=TRANSACTION_NAME_CODES.get(invoice.transaction_type, "0200000"),
    )
    _cbc(root, "DocumentCurrencyCode", settings.currency)
    _cbc(root, "TaxCurrencyCode", settings.currency)

    _document_reference(root, "ICV", uuid=invoice.invoice_counter)
    _document_reference(root, "PIH", binary=invoice.previous_invoice_hash or "")
    _document_reference(root, "QR", binary=invoice.qr_code)

    # Seller
    supplier = _cac(_cac(root, "AccountingSupplierParty"), "Party")
    _cbc(_cac(supplier, "PartyIdentification"), "ID", invoice.seller_cr_number or "", schemeID="CRN")
    address = _cac(supplier, "PostalAddress")
    _cbc(address, "StreetName", invoice.seller_address or "")
    _cbc(address, "BuildingNumber", invoice.seller_building_number or "")
    _cbc(address, "CityName", invoice.seller_city or "")
    _cbc(address, "PostalZone", invoice.seller_postal_code or "")
    _cbc(address, "CountrySubentity", invoice.seller_district or "")
    _cbc(_cac(address, "Country"), "IdentificationCode", invoice.seller_country)
    tax_scheme = _cac(supplier, "PartyTaxScheme")
    _cbc(tax_scheme, "CompanyID", invoice.seller_vat_number)
    _tax_scheme(tax_scheme)
    _cbc(_cac(supplier, "PartyLegalEntity"), "RegistrationName", invoice.seller_name)

    # Customer
    customer = _cac(_cac(root, "AccountingCustomerParty"), "Party")
    if invoice.customer_vat_number:
        _cbc(_cac(customer, "PartyIdentification"), "ID", invoice.customer_vat_number, schemeID="VAT")
    address = _cac(customer, "PostalAddress")
    _cbc(address, "StreetName", invoice.customer_address or "")
    _cbc(_cac(address, "Country"), "IdentificationCode", "SA")
    if invoice.customer_vat_number:
        tax_scheme = _cac(customer, "PartyTaxScheme")
        _cbc(tax_scheme, "CompanyID", invoice.customer_vat_number)
        _tax_scheme(tax_scheme)
    _cbc(_cac(customer, "PartyLegalEntity"), "RegistrationName", invoice.customer_name or "")

    _cbc(_cac(root, "PaymentMeans"), "PaymentMeansCode", invoice.payment_means_code)

    tax_total = _cac(root, "TaxTotal")
    _amount(tax_total, "TaxAmount", invoice.tax_amount)
    for percent, (taxable, tax) in _tax_breakdown(invoice.items).items():
        subtotal = _cac(tax_total, "TaxSubtotal")
        _amount(subtotal, "TaxableAmount", taxable)
        _amount(subtotal, "TaxAmount", tax)
        category = _cac(subtotal, "TaxCategory")
        _cbc(category, "ID", _tax_category_id(percent))
        _cbc(category, "Percent", f"{percent:.2f}")
        _tax_scheme(category)

    monetary = _cac(root, "LegalMonetaryTotal")
    _amount(monetary, "LineExtensionAmount", invoice.subtotal)
    _amount(monetary, "TaxExclusiveAmount", invoice.taxable_amount)
    _amount(monetary, "TaxInclusiveAmount", invoice.total_amount)
    _amount(monetary, "AllowanceTotalAmount", invoice.total_discount_amount)
    _amount(monetary, "PayableAmount", invoice.total_amount)

    for idx, item in enumerate(invoice.items, 1):
        line = _cac(root, "InvoiceLine")
        _cbc(line, "ID", idx)
        _cbc(line, "InvoicedQuantity", f"{to_decimal(item.get('quantity') or 1).normalize():f}", unitCode="PCE")
        _amount(line, "LineExtensionAmount", item.get("taxable_amount"))
        _amount(_cac(line, "TaxTotal"), "TaxAmount", item.get("tax_amount"))
        product = _cac(line, "Item")
        _cbc(product, "Name", item.get("name_ar") or "منتج")
        tax_category = _cac(product, "ClassifiedTaxCategory")
        percent = _line_percent(item)
        _cbc(tax_category, "ID", _tax_category_id(percent))
        _cbc(tax_category, "Percent", f"{percent:.2f}")
        _tax_scheme(tax_category)
        price = _cac(line, "Price")
        _amount(price, "PriceAmount", item.get("unit_price"))
        discount = to_decimal(item.get("discount_amount"))
        if discount > 0:
            allowance = _cac(price, "AllowanceCharge")
            _cbc(allowance, "ChargeIndicator", "false")
            _cbc(allowance, "AllowanceChargeReason", "Discount")
            _amount(allowance, "Amount", discount)

    ET.indent(root)
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")
