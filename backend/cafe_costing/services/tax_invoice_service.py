"""Tax invoice issuance with a global, hash-chained counter.

Each invoice takes the next ``invoice_counter`` after the latest invoice in
the installation and hashes its canonical data prefixed with that invoice's
hash. Reading the chain head, hashing and persisting happen under a
process-wide lock; the unique constraints on ``invoice_counter`` and
``uuid`` catch writers outside this process, and those collisions are
retried a bounded number of times before failing the request.
"""

import logging
import threading
import uuid as uuid_lib
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cafe_costing.core.config import settings
from cafe_costing.core.money import ZERO, money, to_decimal
from cafe_costing.db.base import utcnow
from cafe_costing.models.order import Order
from cafe_costing.models.tax_invoice import TaxInvoice
from cafe_costing.services import zatca

logger = logging.getLogger(__name__)

_chain_lock = threading.Lock()

NOTE_TYPES = ("credit_note", "debit_note")


class InvoiceChainError(Exception):
    """Raised when an invoice cannot be appended to the chain after retries."""

    def __init__(self, attempts: int, reason: str = "invoice counter collision"):
        self.attempts = attempts
        super().__init__(f"Could not issue invoice after {attempts} attempts: {reason}")


class InvoiceValidationError(ValueError):
    """Raised for invoice requests that can never succeed as submitted."""


class TaxInvoiceService:
    """Issue, query and verify chained tax invoices."""

    def __init__(self, db: Session):
        self.db = db

    # ==================== ISSUANCE ====================

    def _chain_position(self) -> Tuple[int, Optional[str]]:
        """Next counter and the hash it must link to."""
        head = (
            self.db.query(TaxInvoice)
            .order_by(TaxInvoice.invoice_counter.desc())
            .first()
        )
        if head is None:
            return 1, None
        return head.invoice_counter + 1, head.invoice_hash

    def create_invoice(
        self,
        order_id: str,
        items: List[Dict[str, Any]],
        payment_method: str = "cash",
        order_number: Optional[str] = None,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        customer_email: Optional[str] = None,
        customer_vat_number: Optional[str] = None,
        customer_address: Optional[str] = None,
        branch_id: Optional[str] = None,
        invoice_type: Optional[str] = None,
        transaction_type: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> TaxInvoice:
        """Issue one invoice. Either the whole invoice is persisted or nothing is.

        An order gets one sales invoice; asking again returns the existing
        one. Credit and debit notes are always issued as new invoices.

        Raises:
            InvoiceValidationError: no items, or a malformed customer VAT number.
            InvoiceChainError: the chain kept colliding after the retry bound.
        """
        if not items:
            raise InvoiceValidationError("An invoice needs at least one item")
        if customer_vat_number:
            customer_vat_number = customer_vat_number.replace(" ", "")
            if not zatca.validate_vat_number(customer_vat_number):
                raise InvoiceValidationError(
                    f"Customer VAT number '{customer_vat_number}' is not a valid 15-digit Saudi VAT number"
                )

        invoice_type = invoice_type or ("standard" if customer_vat_number else "simplified")
        transaction_type = transaction_type or ("B2B" if customer_vat_number else "B2C")

        lines = zatca.build_invoice_lines(items)
        totals = zatca.sum_invoice_totals(lines)
        stored_lines = [zatca.serialize_line(line) for line in lines]

        max_attempts = max(1, settings.invoice_max_retries)
        with _chain_lock:
            for attempt in range(1, max_attempts + 1):
                # Read under the lock so concurrent requests for one order see each other
                if invoice_type not in NOTE_TYPES:
                    existing = self._sales_invoice_for_order(order_id)
                    if existing is not None:
                        logger.info(f"Order {order_id} already invoiced as {existing.invoice_number}")
                        return existing

                counter, previous_hash = self._chain_position()
                issued_at = zatca.truncate_to_millis(utcnow())
                local_day = issued_at.astimezone(ZoneInfo(settings.business_timezone))
                invoice_uuid = str(uuid_lib.uuid4())
                invoice_number = zatca.generate_invoice_number(counter, local_day)

                invoice_hash = zatca.compute_invoice_hash(
                    zatca.canonical_invoice_data(
                        invoice_uuid,
                        invoice_number,
                        counter,
                        issued_at,
                        totals["total_amount"],
                        totals["tax_amount"],
                    ),
                    previous_hash,
                )
                qr_code = zatca.encode_tlv(
                    seller_name=settings.seller_name,
                    vat_number=settings.seller_vat_number,
                    timestamp=zatca.format_timestamp(issued_at),
                    total_with_vat=f"{totals['total_amount']:.2f}",
                    vat_amount=f"{totals['tax_amount']:.2f}",
                    invoice_hash=invoice_hash,
                )

                invoice = TaxInvoice(
                    invoice_number=invoice_number,
                    uuid=invoice_uuid,
                    invoice_counter=counter,
                    invoice_hash=invoice_hash,
                    previous_invoice_hash=previous_hash,
                    qr_code=qr_code,
                    order_id=str(order_id),
                    order_number=order_number,
                    branch_id=branch_id,
                    seller_name=settings.seller_name,
                    seller_name_en=settings.seller_name_en,
                    seller_vat_number=settings.seller_vat_number,
                    seller_address=settings.seller_address,
                    seller_city=settings.seller_city,
                    seller_country=settings.seller_country,
                    seller_cr_number=settings.seller_cr_number,
                    seller_building_number=settings.seller_building_number,
                    seller_postal_code=settings.seller_postal_code,
                    seller_district=settings.seller_district,
                    customer_name=customer_name,
                    customer_phone=customer_phone,
                    customer_email=customer_email,
                    customer_vat_number=customer_vat_number,
                    customer_address=customer_address,
                    invoice_type=invoice_type,
                    invoice_type_code=zatca.invoice_type_code(invoice_type),
                    transaction_type=transaction_type,
                    items=stored_lines,
                    payment_method=payment_method,
                    payment_means_code=zatca.payment_means_code(payment_method),
                    invoice_date=issued_at,
                    status="pending",
                    created_by=created_by,
                    **totals,
                )
                invoice.xml_content = zatca.generate_invoice_xml(invoice)

                self.db.add(invoice)
                try:
                    self.db.commit()
                except IntegrityError:
                    self.db.rollback()
                    logger.warning(
                        f"Invoice counter {counter} collided (attempt {attempt}/{max_attempts})",
                        extra={"event": "invoice_chain_conflict", "invoice_counter": counter},
                    )
                    continue

                self.db.refresh(invoice)
                logger.info(
                    f"Issued invoice {invoice.invoice_number} for order {order_id}: "
                    f"total {invoice.total_amount}, VAT {invoice.tax_amount}"
                )
                return invoice

        logger.error(
            f"Giving up on invoice for order {order_id} after {max_attempts} attempts",
            extra={"event": "invoice_chain_failed", "order_id": str(order_id)},
        )
        raise InvoiceChainError(max_attempts)

    def create_invoice_for_order(
        self,
        order: Order,
        customer_vat_number: Optional[str] = None,
        customer_address: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> TaxInvoice:
        """Issue the sales invoice of a persisted order from its line items.

        Order prices are taken as the pre-VAT unit price.
        """
        items = []
        for idx, item in enumerate(order.items or [], 1):
            items.append({
                "item_id": item.get("product_id") or item.get("productId") or item.get("menuItemId") or idx,
                "name_ar": item.get("name") or item.get("nameAr"),
                "name_en": item.get("nameEn"),
                "quantity": item.get("quantity") or 1,
                "unit_price": item.get("price") or item.get("unit_price") or item.get("unitPrice") or 0,
                "discount_amount": item.get("discount_amount") or item.get("discountAmount"),
                "tax_rate": item.get("tax_rate") if item.get("tax_rate") is not None else item.get("taxRate"),
            })
        return self.create_invoice(
            order_id=str(order.id),
            order_number=order.order_number,
            customer_name=order.customer_name,
            customer_phone=order.customer_phone,
            customer_vat_number=customer_vat_number,
            customer_address=customer_address,
            items=items,
            payment_method=order.payment_method,
            branch_id=order.branch_id,
            created_by=created_by,
        )

    # ==================== QUERIES ====================

    def get_invoice(self, invoice_id: int) -> Optional[TaxInvoice]:
        return self.db.get(TaxInvoice, invoice_id)

    def _sales_invoice_for_order(self, order_id: str) -> Optional[TaxInvoice]:
        return (
            self.db.query(TaxInvoice)
            .filter(
                TaxInvoice.order_id == str(order_id),
                TaxInvoice.invoice_type.notin_(NOTE_TYPES),
            )
            .order_by(TaxInvoice.invoice_counter)
            .first()
        )

    def get_invoice_by_order(self, order_id: str) -> Optional[TaxInvoice]:
        """The order's sales invoice, or its first note when it has none."""
        sales_invoice = self._sales_invoice_for_order(order_id)
        if sales_invoice is not None:
            return sales_invoice
        return (
            self.db.query(TaxInvoice)
            .filter(TaxInvoice.order_id == str(order_id))
            .order_by(TaxInvoice.invoice_counter)
            .first()
        )

    def get_invoices_by_branch(
        self,
        branch_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[TaxInvoice]:
        query = self.db.query(TaxInvoice).filter(TaxInvoice.branch_id == branch_id)
        if start:
            query = query.filter(TaxInvoice.invoice_date >= start)
        if end:
            query = query.filter(TaxInvoice.invoice_date <= end)
        return query.order_by(TaxInvoice.invoice_date.desc()).all()

    def get_invoice_stats(
        self,
        branch_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        query = self.db.query(
            func.count(TaxInvoice.id),
            func.coalesce(func.sum(TaxInvoice.total_amount), 0),
            func.coalesce(func.sum(TaxInvoice.tax_amount), 0),
        )
        if branch_id:
            query = query.filter(TaxInvoice.branch_id == branch_id)
        if start:
            query = query.filter(TaxInvoice.invoice_date >= start)
        if end:
            query = query.filter(TaxInvoice.invoice_date <= end)
        count, revenue, vat = query.one()

        revenue = to_decimal(revenue)
        return {
            "total_invoices": count,
            "total_revenue": float(money(revenue)),
            "total_vat": float(money(vat)),
            "average_invoice_value": float(money(revenue / count)) if count else 0.0,
        }

    # ==================== VERIFICATION ====================

    def verify_invoice(self, invoice: TaxInvoice) -> bool:
        """Recompute one invoice's hash from its stored fields."""
        expected = zatca.compute_invoice_hash(
            zatca.canonical_invoice_data(
                invoice.uuid,
                invoice.invoice_number,
                invoice.invoice_counter,
                invoice.invoice_date,
                invoice.total_amount,
                invoice.tax_amount,
            ),
            invoice.previous_invoice_hash,
        )
        return expected == invoice.invoice_hash

    def verify_chain(self) -> Dict[str, Any]:
        """Walk every invoice by counter and report the first broken link."""
        invoices = self.db.query(TaxInvoice).order_by(TaxInvoice.invoice_counter).all()

        previous: Optional[TaxInvoice] = None
        for invoice in invoices:
            problem = None
            expected_counter = previous.invoice_counter + 1 if previous else 1
            expected_previous_hash = previous.invoice_hash if previous else None

            if invoice.invoice_counter != expected_counter:
                problem = f"counter gap: expected {expected_counter}, found {invoice.invoice_counter}"
            elif (invoice.previous_invoice_hash or None) != expected_previous_hash:
                problem = "previous hash does not match the preceding invoice"
            elif not self.verify_invoice(invoice):
                problem = "stored hash does not match invoice data"

            if problem:
                logger.warning(
                    f"Invoice chain broken at {invoice.invoice_number}: {problem}",
                    extra={"event": "invoice_chain_broken", "invoice_counter": invoice.invoice_counter},
                )
                return {
                    "valid": False,
                    "checked": len(invoices),
                    "first_broken": {
                        "invoice_id": invoice.id,
                        "invoice_number": invoice.invoice_number,
                        "invoice_counter": invoice.invoice_counter,
                        "problem": problem,
                    },
                }
            previous = invoice

        return {"valid": True, "checked": len(invoices), "first_broken": None}


def invoice_to_dict(invoice: TaxInvoice, include_xml: bool = False) -> Dict[str, Any]:
    data = {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "uuid": invoice.uuid,
        "invoice_counter": invoice.invoice_counter,
        "invoice_hash": invoice.invoice_hash,
        "previous_invoice_hash": invoice.previous_invoice_hash,
        "qr_code": invoice.qr_code,
        "order_id": invoice.order_id,
        "order_number": invoice.order_number,
        "branch_id": invoice.branch_id,
        "seller_name": invoice.seller_name,
        "seller_vat_number": invoice.seller_vat_number,
        "customer_name": invoice.customer_name,
        "customer_vat_number": invoice.customer_vat_number,
        "invoice_type": invoice.invoice_type,
        "invoice_type_code": invoice.invoice_type_code,
        "transaction_type": invoice.transaction_type,
        "items": invoice.items,
        "subtotal": float(invoice.subtotal),
        "total_discount_amount": float(invoice.total_discount_amount or ZERO),
        "taxable_amount": float(invoice.taxable_amount),
        "tax_amount": float(invoice.tax_amount),
        "total_amount": float(invoice.total_amount),
        "payment_method": invoice.payment_method,
        "payment_means_code": invoice.payment_means_code,
        "invoice_date": zatca.format_timestamp(invoice.invoice_date),
        "status": invoice.status,
    }
    if include_xml:
        data["xml_content"] = invoice.xml_content
    return data
