"""Hash-chained tax invoices."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cafe_costing.db.base import Base


class TaxInvoice(Base):
    """An issued tax invoice. Rows are append-only.

    ``invoice_counter`` is unique across the installation and
    ``invoice_hash`` covers ``previous_invoice_hash``, linking every
    invoice to the one issued before it.
    """

    __tablename__ = "tax_invoices"

    id: Mapped[int] = mapped_column(primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    uuid: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    invoice_counter: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)
    invoice_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    previous_invoice_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    qr_code: Mapped[str] = mapped_column(Text, nullable=False)

    order_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    order_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    branch_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)

    # Seller identity as configured at issue time
    seller_name: Mapped[str] = mapped_column(String(255), nullable=False)
    seller_name_en: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    seller_vat_number: Mapped[str] = mapped_column(String(20), nullable=False)
    seller_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    seller_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    seller_country: Mapped[str] = mapped_column(String(2), default="SA", nullable=False)
    seller_cr_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    seller_building_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    seller_postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    seller_district: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    customer_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_vat_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    customer_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    invoice_type: Mapped[str] = mapped_column(String(20), nullable=False)  # simplified, standard, credit_note, debit_note
    invoice_type_code: Mapped[str] = mapped_column(String(3), nullable=False)  # 388, 381, 383
    transaction_type: Mapped[str] = mapped_column(String(3), nullable=False)  # B2B, B2C

    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_means_code: Mapped[str] = mapped_column(String(3), nullable=False)

    invoice_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    xml_content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)  # pending = not submitted
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
