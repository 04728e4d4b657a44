"""Admin area pages.

The pages are placeholders for the admin frontend; what matters here is that
``/admin/dashboard`` sits behind the admin gate and ``/admin/login`` does not.
"""
from fastapi import APIRouter, Request

from karma_cms.errors import not_authenticated

router = APIRouter(tags=["admin-pages"])


def login_page():
    """Login page (the only unauthenticated admin page)."""
    return {"page": "login", "action": "/api/admin/login"}


@router.get("/dashboard")
def dashboard(request: Request):
    """Dashboard for the admin attached by the gate."""
    context = getattr(request.state, "auth_context", None)
    if context is None:
        raise not_authenticated()
    return {
        "page": "dashboard",
        "user": {"id": context.user_id, "username": context.username, "email": context.email},
        "needsRenewal": context.needs_renewal,
    }
