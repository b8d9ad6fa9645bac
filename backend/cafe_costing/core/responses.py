"""Response helpers shared by the routers.

Lists are wrapped as ``{"items": [...], "total": n}``; single objects are
returned as-is. Report files go out as attachments.
"""

from typing import Optional

from fastapi import Response

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
PDF_MEDIA_TYPE = "application/pdf"
XML_MEDIA_TYPE = "application/xml; charset=utf-8"


def list_response(items: list, total: Optional[int] = None) -> dict:
    """Wrap a list in the standard envelope; ``total`` defaults to ``len(items)``."""
    return {
        "items": items,
        "total": total if total is not None else len(items),
    }


def attachment_response(content, filename: str, media_type: str = CSV_MEDIA_TYPE) -> Response:
    """A downloadable file (CSV, PDF or XML)."""
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
