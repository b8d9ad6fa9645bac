"""Tax invoice routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from cafe_costing.core.rate_limit import limiter
from cafe_costing.core.responses import XML_MEDIA_TYPE, attachment_response, list_response
from cafe_costing.db.session import DbSession
from cafe_costing.models.order import Order
from cafe_costing.schemas.invoice import InvoiceCreate, OrderInvoiceRequest
from cafe_costing.services import zatca
from cafe_costing.services.accounting_service import period_bounds
from cafe_costing.services.tax_invoice_service import (
    InvoiceChainError,
    InvoiceValidationError,
    TaxInvoiceService,
    invoice_to_dict,
)

router = APIRouter()


def _issue(call):
    try:
        return call()
    except InvoiceValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except InvoiceChainError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


@router.post("/", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def create_invoice(request: Request, db: DbSession, body: InvoiceCreate):
    """Issue a chained tax invoice."""
    data = body.model_dump()
    items = data.pop("items")
    invoice = _issue(lambda: TaxInvoiceService(db).create_invoice(items=items, **data))
    return invoice_to_dict(invoice)


@router.post("/orders/{order_id}", status_code=status.HTTP_201_CREATED)
@limiter.limit("60/minute")
def create_invoice_for_order(request: Request, db: DbSession, order_id: int, body: OrderInvoiceRequest):
    """Issue the invoice of a stored order from its line items."""
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    invoice = _issue(lambda: TaxInvoiceService(db).create_invoice_for_order(
        order,
        customer_vat_number=body.customer_vat_number,
        customer_address=body.customer_address,
        created_by=body.created_by,
    ))
    return invoice_to_dict(invoice)


@router.get("/orders/{order_id}")
@limiter.limit("60/minute")
def get_invoice_by_order(request: Request, db: DbSession, order_id: str):
    invoice = TaxInvoiceService(db).get_invoice_by_order(order_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="No invoice for this order")
    return invoice_to_dict(invoice)


@router.get("/branches/{branch_id}")
@limiter.limit("60/minute")
def get_invoices_by_branch(
    request: Request,
    db: DbSession,
    branch_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date) if start_date or end_date else (None, None)
    invoices = TaxInvoiceService(db).get_invoices_by_branch(branch_id, start, end)
    return list_response([invoice_to_dict(i) for i in invoices])


@router.get("/stats")
@limiter.limit("60/minute")
def get_invoice_stats(
    request: Request,
    db: DbSession,
    branch_id: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
):
    start, end = period_bounds(start_date, end_date) if start_date or end_date else (None, None)
    return TaxInvoiceService(db).get_invoice_stats(branch_id, start, end)


@router.get("/verify-chain")
@limiter.limit("10/minute")
def verify_chain(request: Request, db: DbSession):
    return TaxInvoiceService(db).verify_chain()


def _get_or_404(db, invoice_id: int):
    invoice = TaxInvoiceService(db).get_invoice(invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/{invoice_id}")
@limiter.limit("60/minute")
def get_invoice(request: Request, db: DbSession, invoice_id: int, include_xml: bool = Query(False)):
    return invoice_to_dict(_get_or_404(db, invoice_id), include_xml=include_xml)


@router.get("/{invoice_id}/xml")
@limiter.limit("60/minute")
def get_invoice_xml(request: Request, db: DbSession, invoice_id: int):
    invoice = _get_or_404(db, invoice_id)
    return attachment_response(invoice.xml_content, f"{invoice.invoice_number}.xml", XML_MEDIA_TYPE)


@router.get("/{invoice_id}/qr")
@limiter.limit("60/minute")
def get_invoice_qr(request: Request, db: DbSession, invoice_id: int):
    """QR payload, its decoded fields and a PNG rendering."""
    invoice = _get_or_404(db, invoice_id)
    return {
        "invoice_number": invoice.invoice_number,
        "qr_code": invoice.qr_code,
        "fields": zatca.decode_tlv(invoice.qr_code),
        "image": zatca.qr_png_data_url(invoice.qr_code),
    }


@router.get("/{invoice_id}/verify")
@limiter.limit("60/minute")
def verify_invoice(request: Request, db: DbSession, invoice_id: int):
    invoice = _get_or_404(db, invoice_id)
    return {
        "invoice_number": invoice.invoice_number,
        "valid": TaxInvoiceService(db).verify_invoice(invoice),
    }
