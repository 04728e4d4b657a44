"""Admin session cookie helpers."""
from starlette.responses import Response

from karma_cms.config import Settings


def set_session_cookie(response: Response, token: str, max_age: int, settings: Settings) -> None:
    """Issue the HttpOnly, same-site strict admin session cookie."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path=settings.session_cookie_path,
        max_age=max_age,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    """Clear the admin session cookie."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        path=settings.session_cookie_path,
        secure=settings.is_production,
        httponly=True,
        samesite="strict",
    )
