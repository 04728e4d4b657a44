"""Site content schemas."""
from pydantic import BaseModel, EmailStr, Field, field_validator


class TestimonialCreate(BaseModel):
    """Request to add a testimonial."""

    name: str = Field(..., min_length=1, max_length=100)
    role: str | None = Field(None, max_length=100)
    company: str | None = Field(None, max_length=100)
    content: str = Field(..., min_length=1, max_length=5000)
    rating: int = Field(5, ge=1, le=5)
    featured: bool = False


class TestimonialUpdate(BaseModel):
    """Request to update a testimonial."""

    name: str | None = Field(None, min_length=1, max_length=100)
    role: str | None = Field(None, max_length=100)
    company: str | None = Field(None, max_length=100)
    content: str | None = Field(None, min_length=1, max_length=5000)
    rating: int | None = Field(None, ge=1, le=5)
    featured: bool | None = None

    @field_validator("name", "content", "rating", "featured")
    @classmethod
    def reject_null(cls, v):
        # Omit a field to leave it unchanged; these columns are NOT NULL
        if v is None:
            raise ValueError("must not be null")
        return v


class TestimonialResponse(BaseModel):
    """Testimonial response."""

    id: str
    name: str
    role: str | None = None
    company: str | None = None
    content: str
    rating: int
    featured: bool
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("featured", mode="before")
    @classmethod
    def parse_featured(cls, v):
        return bool(v)

    class Config:
        from_attributes = True


class ContactSubmissionCreate(BaseModel):
    """Public contact form payload.

    ``website`` is a honeypot: the form hides it, so only bots fill it in.
    """

    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(None, max_length=40)
    company: str | None = Field(None, max_length=100)
    training_type: str | None = Field(None, max_length=100)
    message: str = Field(..., min_length=1, max_length=5000)
    website: str | None = None


class ContactSubmissionResponse(BaseModel):
    """Contact submission as seen by admins."""

    id: str
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    training_type: str | None = None
    message: str
    ip_address: str | None = None
    created_at: str | None = None

    class Config:
        from_attributes = True
