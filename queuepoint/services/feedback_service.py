from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from queuepoint.errors import InvalidInput, NotFound
from queuepoint.models import CustomerFeedback, FeedbackStatus
from queuepoint.services.gateway import atomic


def parse_feedback_status(value: str | FeedbackStatus) -> FeedbackStatus:
    if isinstance(value, FeedbackStatus):
        return value
    try:
        return FeedbackStatus(str(value).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f'Unknown feedback status: {value}') from exc


def create_feedback(
    db: Session,
    *,
    customer_name: str,
    pc_number: str,
    message: str,
    rating: int = 5,
) -> CustomerFeedback:
    customer_name = (customer_name or '').strip()
    pc_number = (pc_number or '').strip().upper()
    message = (message or '').strip()
    if not customer_name or not pc_number or not message:
        raise InvalidInput('Name, PC number and message are required')
    if rating is None or not 1 <= int(rating) <= 5:
        raise InvalidInput('Rating must be between 1 and 5')

    with atomic(db, operation='create_feedback'):
        feedback = CustomerFeedback(
            customer_name=customer_name,
            pc_number=pc_number,
            feedback_message=message,
            rating=int(rating),
            status=FeedbackStatus.NEW,
        )
        db.add(feedback)
        db.flush()
    return feedback


def list_feedback(db: Session, *, status: str | None = None, limit: int = 200) -> list[CustomerFeedback]:
    stmt = select(CustomerFeedback).order_by(CustomerFeedback.created_at.desc(), CustomerFeedback.id.desc()).limit(limit)
    if status:
        stmt = stmt.where(CustomerFeedback.status == parse_feedback_status(status))
    return list(db.execute(stmt).scalars().all())


def get_feedback(db: Session, feedback_id: int) -> CustomerFeedback:
    feedback = db.execute(select(CustomerFeedback).where(CustomerFeedback.id == feedback_id)).scalar_one_or_none()
    if not feedback:
        raise NotFound(f'Feedback {feedback_id} not found')
    return feedback


def update_feedback_status(db: Session, *, feedback_id: int, status: str | FeedbackStatus) -> CustomerFeedback:
    target = parse_feedback_status(status)
    with atomic(db, operation='update_feedback_status'):
        feedback = get_feedback(db, feedback_id)
        feedback.status = target
    return feedback


def delete_feedback(db: Session, *, feedback_id: int) -> None:
    with atomic(db, operation='delete_feedback'):
        db.delete(get_feedback(db, feedback_id))
