"""Report exports: CSV files with Arabic headers, text summaries and PDFs."""

import csv
import io
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from cafe_costing.core.config import settings
from cafe_costing.core.money import money, to_decimal
from cafe_costing.db.base import as_utc
from cafe_costing.models.inventory import RawItem
from cafe_costing.models.order import Order

logger = logging.getLogger(__name__)

ORDER_HEADERS = [
    "رقم الطلب",
    "التاريخ",
    "العميل",
    "المبلغ",
    "تكلفة البضاعة",
    "الربح",
    "طريقة الدفع",
    "الحالة",
]

INVENTORY_HEADERS = [
    "اسم المكون",
    "الكمية الحالية",
    "الوحدة",
    "الحد الأدنى",
    "التكلفة للوحدة",
    "الحالة",
]

PROFIT_HEADERS = [
    "المنتج",
    "الفئة",
    "الكمية المباعة",
    "إجمالي الإيرادات",
    "تكلفة البضاعة",
    "الربح",
    "نسبة الربح %",
]

WASTE_HEADERS = [
    "المادة الخام",
    "الكمية",
    "الوحدة",
    "قيمة الهدر",
    "السبب",
    "التاريخ",
]

STOCK_LOW = "منخفض"
STOCK_NORMAL = "طبيعي"
WALK_IN_CUSTOMER = "زائر"


def _amount(value: Any) -> str:
    return f"{money(value):.2f}"


def _percent(value: Any) -> str:
    return f"{to_decimal(value):.1f}"


def _to_csv(headers: List[str], rows: Iterable[List[Any]]) -> str:
    """Comma-delimited text; every header cell is double-quoted."""
    buffer = io.StringIO()
    header_writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    header_writer.writerow(headers)
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        writer.writerow(row)
    return buffer.getvalue()


def _local_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return as_utc(value).astimezone(ZoneInfo(settings.business_timezone)).strftime("%Y-%m-%d")


def export_orders_csv(orders: List[Order]) -> str:
    rows = []
    for order in orders:
        revenue = to_decimal(order.total_amount)
        cogs = to_decimal(order.cost_of_goods)
        rows.append([
            order.order_number or order.id,
            _local_date(order.created_at),
            order.customer_name or WALK_IN_CUSTOMER,
            _amount(revenue),
            _amount(cogs),
            _amount(revenue - cogs),
            order.payment_method or "cash",
            order.status or "unknown",
        ])
    return _to_csv(ORDER_HEADERS, rows)


def export_inventory_csv(items: List[RawItem]) -> str:
    rows = []
    for item in items:
        stock = to_decimal(item.current_stock)
        threshold = to_decimal(item.min_stock_threshold)
        rows.append([
            item.name_ar,
            f"{stock.normalize():f}",
            item.unit or "pcs",
            f"{threshold.normalize():f}",
            _amount(item.unit_cost),
            STOCK_LOW if stock <= threshold else STOCK_NORMAL,
        ])
    return _to_csv(INVENTORY_HEADERS, rows)


def export_profit_csv(profit_rows: List[Dict[str, Any]]) -> str:
    """Profit-by-item rows as produced by ``AccountingService.get_profit_per_drink``."""
    rows = [
        [
            r["item_name"],
            r["category"],
            f"{to_decimal(r['quantity_sold']).normalize():f}",
            _amount(r["total_revenue"]),
            _amount(r["total_cogs"]),
            _amount(r["total_profit"]),
            _percent(r["profit_margin"]),
        ]
        for r in profit_rows
    ]
    return _to_csv(PROFIT_HEADERS, rows)


def export_waste_csv(waste_rows: List[Dict[str, Any]]) -> str:
    rows = [
        [
            r["raw_item_name"],
            f"{to_decimal(r['quantity']).normalize():f}",
            r["unit"],
            _amount(r["waste_amount"]),
            r["notes"],
            (r.get("created_at") or "")[:10],
        ]
        for r in waste_rows
    ]
    return _to_csv(WASTE_HEADERS, rows)


def daily_summary_text(snapshot: Dict[str, Any]) -> str:
    """Plain-text daily report with Arabic labels."""
    currency = "ريال" if settings.currency == "SAR" else settings.currency
    lines = [
        f"تقرير يومي - {snapshot['date']}",
        "=" * 37,
        f"عدد الطلبات: {snapshot['sales_count']}",
        f"إجمالي المبيعات: {_amount(snapshot['total_revenue'])} {currency}",
        f"تكلفة البضاعة: {_amount(snapshot['total_cogs'])} {currency}",
        f"إجمالي الربح: {_amount(snapshot['gross_profit'])} {currency}",
        f"نسبة الربح: {_percent(snapshot['profit_margin'])}%",
        f"قيمة الهدر: {_amount(snapshot['waste_amount'])} {currency}",
        f"نسبة الهدر: {_percent(snapshot['waste_percentage'])}%",
        "=" * 37,
    ]
    return "\n".join(lines)


def _items_table(title: str, items: List[Dict[str, Any]], styles) -> list:
    elements = [Paragraph(f"<b>{title}</b>", styles["Heading2"])]
    if not items:
        elements.append(Paragraph("No items in this period.", styles["Normal"]))
        return elements

    table_data = [["#", "Item", "Category", "Qty", "Revenue", "COGS", "Profit", "Margin %"]]
    for idx, item in enumerate(items, 1):
        table_data.append([
            str(idx),
            str(item.get("item_name", ""))[:28],
            str(item.get("category", ""))[:16],
            f"{to_decimal(item['quantity_sold']).normalize():f}",
            _amount(item["total_revenue"]),
            _amount(item["total_cogs"]),
            _amount(item["total_profit"]),
            _percent(item["profit_margin"]),
        ])

    table = Table(
        table_data,
        colWidths=[1 * cm, 5 * cm, 3 * cm, 1.5 * cm, 2 * cm, 2 * cm, 2 * cm, 1.8 * cm],
    )
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 10),
        ("BACKGROUND", (0, 1), (-1, -1), colors.beige),
        ("GRID", (0, 0), (-1, -1), 1, colors.black),
    ]))
    elements.append(table)
    return elements


def generate_profit_pdf(
    branch_id: str,
    start: datetime,
    end: datetime,
    top_items: List[Dict[str, Any]],
    worst_items: List[Dict[str, Any]],
    summary: Optional[Dict[str, Any]] = None,
) -> bytes:
    """Render the profit report (top and worst items) as a PDF."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=2 * cm, bottomMargin=2 * cm)

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "Title",
        parent=styles["Heading1"],
        fontSize=18,
        spaceAfter=20,
    )

    elements = [Paragraph(f"Profit Report - Branch {branch_id}", title_style)]
    elements.append(Paragraph(
        f"<b>Period:</b> {_local_date(start)} to {_local_date(end)}",
        styles["Normal"],
    ))
    if summary:
        elements.append(Paragraph(
            f"<b>Revenue:</b> {_amount(summary['total_revenue'])} {settings.currency} "
            f"&nbsp; <b>COGS:</b> {_amount(summary['total_cogs'])} {settings.currency} "
            f"&nbsp; <b>Gross profit:</b> {_amount(summary['gross_profit'])} {settings.currency}",
            styles["Normal"],
        ))
    elements.append(Spacer(1, 1 * cm))

    elements.extend(_items_table("Top profitable items", top_items, styles))
    elements.append(Spacer(1, 1 * cm))
    elements.extend(_items_table("Worst performing items", worst_items, styles))

    doc.build(elements)
    logger.info(f"Generated profit PDF for branch {branch_id}")
    return buffer.getvalue()


def save_export(filename: str, content: str) -> str:
    """Write a text export under ``settings.export_dir`` and return its path."""
    os.makedirs(settings.export_dir, exist_ok=True)
    filepath = os.path.join(settings.export_dir, filename)
    with open(filepath, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    logger.info(f"Saved export {filepath}")
    return filepath
