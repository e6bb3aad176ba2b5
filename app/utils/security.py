from typing import Optional

from starlette.requests import Request

BEARER_PREFIX = "bearer "


def get_client_ip(request: Request) -> str:
    """
    Extracts the client's IP address from the request.
    Assumes a proxy setup where the client IP is the first entry of
    'x-forwarded-for'.
    """
    x_forwarded_for = request.headers.get("x-forwarded-for")
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()

    return request.client.host if request.client else "unknown"


def get_session_id(request: Request, cookie_name: str) -> Optional[str]:
    """
    Session id from the session cookie, or from an ``Authorization: Bearer``
    header for API clients that do not keep cookies.
    """
    sid = request.cookies.get(cookie_name)
    if sid:
        return sid

    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None
