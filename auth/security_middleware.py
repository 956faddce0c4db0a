"""Session validation middleware: authenticates requests and sets the user context."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from utils.user_context import set_current_user_id, clear_current_user_id


class AuthMiddleware(BaseHTTPMiddleware):
    """Validates the session cookie on protected routes.

    For protected routes the session token is read from the cookie, validated
    through SessionManager, and the user id is placed on request.state and in
    the user context for the duration of the request.

    The payment webhook is public: it authenticates by gateway signature.
    """

    PUBLIC_PATHS = (
        "/health",
        "/webhooks/payment",
        "/docs",
        "/openapi.json",
    )

    def __init__(self, app, session_manager: SessionManager, cookie_name: str = "session_token"):
        super().__init__(app)
        self._session_manager = session_manager
        self._cookie_name = cookie_name

    def _is_public_path(self, path: str) -> bool:
        return any(path == public or path.startswith(public + "/") for public in self.PUBLIC_PATHS)

    @staticmethod
    def _unauthorized(code: str, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content=error_response(code, message).model_dump(mode="json"),
        )

    async def dispatch(self, request: Request, call_next):
        if self._is_public_path(request.url.path):
            return await call_next(request)

        session_token = request.cookies.get(self._cookie_name)
        if not session_token:
            return self._unauthorized(ErrorCodes.NOT_AUTHENTICATED, "Authentication required")

        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            return self._unauthorized(ErrorCodes.SESSION_EXPIRED, "Session has expired")

        set_current_user_id(session.user_id)
        request.state.user_id = session.user_id
        request.state.session = session

        try:
            return await call_next(request)
        finally:
            clear_current_user_id()
