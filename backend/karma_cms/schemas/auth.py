"""Authentication schemas."""
from pydantic import BaseModel, Field


class AdminLogin(BaseModel):
    """Admin login request."""

    username: str = Field(..., min_length=1, max_length=255)  # Can be username or email
    password: str = Field(..., min_length=1, max_length=1024)


class AdminUserResponse(BaseModel):
    """Public view of an admin account."""

    id: str
    username: str
    email: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """Successful login response."""

    success: bool = True
    user: AdminUserResponse


class SessionStatus(BaseModel):
    """Current admin session."""

    authenticated: bool = True
    user: AdminUserResponse
    expiresAt: str
    timeLeft: int
    needsRenewal: bool
    securityLevel: str | None = None


class SessionRenewed(BaseModel):
    """Renewed session details; the new token travels in the cookie."""

    success: bool = True
    expiresAt: str
    maxAge: int


class SessionInfo(BaseModel):
    """One of the current admin's sessions."""

    id: str
    createdAt: str
    expiresAt: str
    lastActivity: str | None = None
    ipAddress: str | None = None
    userAgent: str | None = None
    current: bool


class SessionList(BaseModel):
    sessions: list[SessionInfo]


class SessionsTerminated(BaseModel):
    success: bool = True
    terminatedCount: int


class CsrfTokenResponse(BaseModel):
    """CSRF token for the current session."""

    csrfToken: str


class MessageResponse(BaseModel):
    """Generic message response."""

    success: bool = True
    message: str
