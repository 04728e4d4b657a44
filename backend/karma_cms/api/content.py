"""Testimonials and contact form endpoints."""
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from karma_cms.api.deps import enforce_rate_limit, get_client_info, get_db, get_now, require_csrf
from karma_cms.models.content import ContactSubmission, Testimonial
from karma_cms.schemas.auth import MessageResponse
from karma_cms.schemas.content import (
    ContactSubmissionCreate,
    ContactSubmissionResponse,
    TestimonialCreate,
    TestimonialResponse,
    TestimonialUpdate,
)
from karma_cms.services.client_info import ClientInfo
from karma_cms.services.sessions import AuthContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["content"])


def _get_testimonial(db: Session, testimonial_id: str) -> Testimonial:
    testimonial = db.query(Testimonial).filter(Testimonial.id == testimonial_id).first()
    if not testimonial:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Testimonial not found",
        )
    return testimonial


@router.get("/testimonials", response_model=list[TestimonialResponse])
def list_public_testimonials(
    response: Response,
    featured: bool = False,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
    now: datetime = Depends(get_now),
):
    """Testimonials for the public site (no auth required)."""
    enforce_rate_limit(db, response, client, "public_api", now)
    query = db.query(Testimonial)
    if featured:
        query = query.filter(Testimonial.featured == 1)
    return query.order_by(Testimonial.created_at.desc()).all()


@router.get("/admin/testimonials", response_model=list[TestimonialResponse])
def list_testimonials(
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """All testimonials, newest first."""
    return db.query(Testimonial).order_by(Testimonial.created_at.desc()).all()


@router.post("/admin/testimonials", response_model=TestimonialResponse, status_code=status.HTTP_201_CREATED)
def create_testimonial(
    data: TestimonialCreate,
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """Add a testimonial."""
    testimonial = Testimonial(
        name=data.name,
        role=data.role,
        company=data.company,
        content=data.content,
        rating=data.rating,
        featured=1 if data.featured else 0,
    )
    db.add(testimonial)
    db.commit()
    db.refresh(testimonial)

    logger.info(f"Testimonial {testimonial.id} created by {context.username}")
    return testimonial


@router.patch("/admin/testimonials/{testimonial_id}", response_model=TestimonialResponse)
def update_testimonial(
    testimonial_id: str,
    data: TestimonialUpdate,
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """Update a testimonial."""
    testimonial = _get_testimonial(db, testimonial_id)

    update_data = data.model_dump(exclude_unset=True)
    if "featured" in update_data:
        update_data["featured"] = 1 if update_data["featured"] else 0
    for field, value in update_data.items():
        setattr(testimonial, field, value)

    db.commit()
    db.refresh(testimonial)

    logger.info(f"Testimonial {testimonial.id} updated by {context.username}")
    return testimonial


@router.delete("/admin/testimonials/{testimonial_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_testimonial(
    testimonial_id: str,
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """Delete a testimonial."""
    testimonial = _get_testimonial(db, testimonial_id)
    db.delete(testimonial)
    db.commit()
    logger.info(f"Testimonial {testimonial_id} deleted by {context.username}")


@router.post("/contact", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def submit_contact_form(
    data: ContactSubmissionCreate,
    response: Response,
    db: Session = Depends(get_db),
    client: ClientInfo = Depends(get_client_info),
    now: datetime = Depends(get_now),
):
    """Accept a contact form submission (no auth required)."""
    enforce_rate_limit(db, response, client, "contact_form", now)

    # Honeypot filled in: answer as if accepted, store nothing
    if data.website:
        logger.warning(f"Contact form honeypot triggered from {client.ip_address}")
        return MessageResponse(message="Thank you, we will be in touch soon")

    submission = ContactSubmission(
        name=data.name,
        email=data.email,
        phone=data.phone,
        company=data.company,
        training_type=data.training_type,
        message=data.message,
        ip_address=client.ip_address,
    )
    db.add(submission)
    db.commit()

    logger.info(f"Contact submission {submission.id} received from {client.ip_address}")
    return MessageResponse(message="Thank you, we will be in touch soon")


@router.get("/admin/contact-submissions", response_model=list[ContactSubmissionResponse])
def list_contact_submissions(
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """Contact submissions, newest first."""
    return (
        db.query(ContactSubmission)
        .order_by(ContactSubmission.created_at.desc())
        .offset(offset)
        .limit(min(limit, 500))
        .all()
    )


@router.delete("/admin/contact-submissions/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact_submission(
    submission_id: str,
    db: Session = Depends(get_db),
    context: AuthContext = Depends(require_csrf),
):
    """Delete a contact submission."""
    submission = db.query(ContactSubmission).filter(ContactSubmission.id == submission_id).first()
    if not submission:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Submission not found",
        )
    db.delete(submission)
    db.commit()
    logger.info(f"Contact submission {submission_id} deleted by {context.username}")
