"""Site content models managed from the admin area."""
import uuid

from sqlalchemy import Column, Integer, String, Text

from karma_cms.clock import to_iso, utcnow
from karma_cms.database import Base


def _now() -> str:
    return to_iso(utcnow())


class Testimonial(Base):
    """Client testimonial shown on the public site."""

    __tablename__ = "testimonials"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    role = Column(String(100))
    company = Column(String(100))
    content = Column(Text, nullable=False)
    rating = Column(Integer, nullable=False, default=5)
    featured = Column(Integer, default=0)  # SQLite boolean
    created_at = Column(String(26), default=_now)
    updated_at = Column(String(26), default=_now, onupdate=_now)


class ContactSubmission(Base):
    """Message sent through the public contact form."""

    __tablename__ = "contact_submissions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(40))
    company = Column(String(100))
    training_type = Column(String(100))
    message = Column(Text, nullable=False)
    ip_address = Column(String(45))
    created_at = Column(String(26), default=_now)
