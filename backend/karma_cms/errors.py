"""Expected rejections and the handlers that render them."""
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid credentials"


class SecurityRejection(Exception):
    """An expected, user-safe refusal (401/403/429 range)."""

    def __init__(
        self,
        status_code: int,
        error: str,
        extra: dict | None = None,
        headers: dict[str, str] | None = None,
        clear_cookie: tuple[str, str] | None = None,
    ):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra or {}
        self.headers = headers or {}
        # (cookie name, cookie path) of a stale session cookie to delete
        self.clear_cookie = clear_cookie

    def to_response(self) -> JSONResponse:
        response = JSONResponse(
            status_code=self.status_code,
            content={"error": self.error, **self.extra},
            headers=self.headers,
        )
        if self.clear_cookie:
            name, path = self.clear_cookie
            response.delete_cookie(key=name, path=path, httponly=True, samesite="strict")
        return response


def not_authenticated(clear_cookie: tuple[str, str] | None = None) -> SecurityRejection:
    return SecurityRejection(status.HTTP_401_UNAUTHORIZED, "Authentication required", clear_cookie=clear_cookie)


async def security_rejection_handler(request: Request, exc: SecurityRejection) -> JSONResponse:
    return exc.to_response()


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log infrastructure faults with context, answer with a generic 500."""
    client_ip = request.client.host if request.client else "unknown"
    logger.exception(f"Unhandled error on {request.method} {request.url.path} from {client_ip}: {exc!r}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )
