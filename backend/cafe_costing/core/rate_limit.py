"""Shared rate limiter for the API routes."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from cafe_costing.core.config import settings

BRANCH_HEADER = "X-Branch-ID"


def get_branch_or_ip(request: Request) -> str:
    """Rate limit per branch terminal when it identifies itself, else per IP."""
    branch = request.headers.get(BRANCH_HEADER, "").strip()
    if branch:
        return f"branch:{branch}:{get_remote_address(request)}"
    return get_remote_address(request)


limiter = Limiter(key_func=get_branch_or_ip, enabled=settings.rate_limit_enabled)
