from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from structlog.contextvars import bind_contextvars

from app.utils.security import get_session_id


class SessionMiddleware(BaseHTTPMiddleware):
    """
    Resolves the session cookie to a stored user and attaches it as
    ``request.state.user`` (None when there is no valid session).

    Authentication itself happens elsewhere; routes that need a user
    reject anonymous requests through the ``get_current_user`` dependency.
    """
    def __init__(self, app, cookie_name: str):
        super().__init__(app)
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next):
        request.state.user = None
        request.state.user_id = None

        store = getattr(request.app.state, "store", None)
        sid = get_session_id(request, self.cookie_name)
        if store is not None and sid:
            user_id = await store.get_session_user_id(sid)
            if user_id is not None:
                user = await store.get_user(user_id)
                if user is not None:
                    request.state.user = user
                    request.state.user_id = user.id
                    bind_contextvars(user_id=user.id)

        return await call_next(request)
