"""Admin user model."""
import uuid

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from karma_cms.clock import to_iso, utcnow
from karma_cms.database import Base


class AdminUser(Base):
    """Administrator account for the CMS."""

    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = Column(String(50), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(String(26), default=lambda: to_iso(utcnow()))
    last_login_at = Column(String(26))

    # Relationships
    sessions = relationship("AdminSession", back_populates="user", cascade="all, delete-orphan")
