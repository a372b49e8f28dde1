from __future__ import annotations

import hmac

from fastapi import Header, HTTPException

from .. import settings as settings_module

API_KEY_HEADER = "X-API-Key"


def require_api_key(api_key: str | None = Header(default=None, alias=API_KEY_HEADER)) -> None:
    """Reject the request unless it carries the configured key. No key configured: open access."""
    expected = settings_module.settings.api_key
    if not expected:
        return
    if not hmac.compare_digest((api_key or "").encode(), expected.encode()):
        raise HTTPException(
            status_code=401,
            detail=f"missing or invalid {API_KEY_HEADER} header",
            headers={"WWW-Authenticate": API_KEY_HEADER},
        )
