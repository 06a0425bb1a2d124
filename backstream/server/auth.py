"""
Caller authentication.

Two headers identify a caller:
- X-API-Key: shared service key, checked only when BACKSTREAM_API_KEY is set.
- X-User-Id: the end user, authenticated by whatever sits in front of us.
"""

import hmac
from typing import Optional

from fastapi import Header

from backstream.config import get_settings
from backstream.server.exceptions import AuthenticationError


def verify_api_key(api_key: Optional[str]) -> bool:
    """Constant-time check against the configured key; open when none is set."""
    expected = get_settings().api_key
    if expected is None:
        return True
    if api_key is None:
        return False
    return hmac.compare_digest(api_key.encode(), expected.encode())


def require_caller(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """
    FastAPI dependency resolving the calling user's id.

    Raises:
        AuthenticationError: service key missing/wrong, or no user id.
    """
    if get_settings().auth_required:
        if x_api_key is None:
            raise AuthenticationError("Missing X-API-Key header")
        if not verify_api_key(x_api_key):
            raise AuthenticationError("Invalid API key")
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")
    return x_user_id
