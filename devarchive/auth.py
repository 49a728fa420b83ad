"""X-API-Key gate for collector endpoints."""
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from devarchive import config

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _is_known_key(candidate: str) -> bool:
    return any(hmac.compare_digest(candidate, key) for key in config.API_KEYS)


async def require_api_key(api_key: Optional[str] = Security(api_key_header)) -> Optional[str]:
    """Reject requests without a configured key. No configured keys means an open gate."""
    if not config.API_KEYS:
        return api_key
    if not api_key or not _is_known_key(api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return api_key
