"""Shared rate limiter for the inventory routes.

Staff terminals usually sit behind one address, so requests are counted per
token subject when a valid Bearer token is present, and per client IP
otherwise.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from lotstock.core.config import settings
from lotstock.core.security import decode_access_token


def user_or_ip(request: Request) -> str:
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        payload = decode_access_token(auth.split(" ", 1)[1])
        if payload and payload.get("sub"):
            return f"user:{payload['sub']}"
    return get_remote_address(request)


limiter = Limiter(key_func=user_or_ip, enabled=settings.rate_limit_enabled)
