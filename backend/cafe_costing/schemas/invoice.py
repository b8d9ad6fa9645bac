"""Tax invoice schemas."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class InvoiceItemIn(BaseModel):
    """An invoice line. ``unit_price`` excludes VAT."""

    model_config = ConfigDict(populate_by_name=True)

    item_id: str = Field(validation_alias=AliasChoices("item_id", "itemId"))
    name_ar: str = Field(validation_alias=AliasChoices("name_ar", "nameAr"))
    name_en: Optional[str] = Field(default=None, validation_alias=AliasChoices("name_en", "nameEn"))
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0, validation_alias=AliasChoices("unit_price", "unitPrice"))
    discount_amount: Decimal = Field(
        default=Decimal("0"), ge=0, validation_alias=AliasChoices("discount_amount", "discountAmount")
    )
    tax_rate: Optional[Decimal] = Field(
        default=None, ge=0, lt=1, validation_alias=AliasChoices("tax_rate", "taxRate")
    )


class InvoiceCreate(BaseModel):
    """Invoice issuance request for an order."""

    order_id: str = Field(min_length=1)
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_vat_number: Optional[str] = None
    customer_address: Optional[str] = None
    items: List[InvoiceItemIn] = Field(min_length=1)
    payment_method: str = "cash"
    branch_id: Optional[str] = None
    invoice_type: Optional[Literal["standard", "simplified", "credit_note", "debit_note"]] = None
    transaction_type: Optional[Literal["B2B", "B2C"]] = None
    created_by: Optional[str] = None


class OrderInvoiceRequest(BaseModel):
    """Extra buyer details when invoicing a stored order."""

    customer_vat_number: Optional[str] = None
    customer_address: Optional[str] = None
    created_by: Optional[str] = None
