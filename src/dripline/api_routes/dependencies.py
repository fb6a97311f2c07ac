"""Shared request dependencies."""

from __future__ import annotations

from fastapi import Header

from dripline.api_errors import bad_request


def get_organization_id(x_organization_id: str | None = Header(None)) -> str:
    """Resolve the calling organization from the ``X-Organization-ID`` header."""
    if not x_organization_id or not x_organization_id.strip():
        raise bad_request("X-Organization-ID header is required")
    return x_organization_id.strip()
