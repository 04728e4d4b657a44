"""SQLAlchemy models package."""
from karma_cms.models.user import AdminUser
from karma_cms.models.auth import AdminSession, LoginCounter, RateLimitBucket
from karma_cms.models.content import ContactSubmission, Testimonial

__all__ = [
    "AdminUser",
    "AdminSession",
    "LoginCounter",
    "RateLimitBucket",
    "Testimonial",
    "ContactSubmission",
]
