"""
Operator token for endpoints that make the relayer act.

``POST /check-deployments`` queries every unfinished swap on both chains
and can schedule ``setFulfiller`` transactions paid for by the relayer
account, so it is guarded once API_TOKEN is set. Swap registration, claims
and the read-only status routes stay public: a claim is authorized by the
secret and the asker address, not by the operator token.

- API_TOKEN unset: the guard is a no-op (local testnet runs only)
- API_TOKEN set: the token must arrive in the X-API-Key header
- Query parameters are never read, so the token stays out of access logs
"""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from peerswap_relayer.config import Settings, get_settings


operator_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "X-API-Key"},
    )


async def require_operator_token(
    api_key: Optional[str] = Depends(operator_key_header),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject the request with 401 unless the operator token matches."""
    if not settings.api_token:
        return

    if not api_key:
        raise _unauthorized("Operator token required in the X-API-Key header")
    if not secrets.compare_digest(api_key.encode(), settings.api_token.encode()):
        raise _unauthorized("Invalid operator token")
