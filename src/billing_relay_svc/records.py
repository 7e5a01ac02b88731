import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from billing_relay_svc.models.payment import Payment
from billing_relay_svc.models.subscription import Subscription
from billing_relay_svc.models.user import User

PLAN_TYPES = ("monthly", "quarterly")


def commit(db: Session, description: str) -> None:
    """Commit the session; on failure roll back, log and re-raise."""
    try:
        db.commit()
        logging.info(f"{description} committed successfully.")
    except Exception as commit_error:
        db.rollback()
        logging.error(commit_error, exc_info=True)
        raise commit_error


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()


def latest_subscription(db: Session, user_id: str, status: Optional[str] = None) -> Optional[Subscription]:
    query = db.query(Subscription).filter(Subscription.user_id == user_id)
    if status is not None:
        query = query.filter(Subscription.status == status)
    return query.order_by(Subscription.updated_at.desc()).first()


def find_subscription_by_provider_id(db: Session, provider_subscription_id: str) -> Optional[Subscription]:
    return (
        db.query(Subscription)
        .filter(Subscription.provider_subscription_id == provider_subscription_id)
        .order_by(Subscription.updated_at.desc())
        .first()
    )


def find_payment_by_provider_id(db: Session, payment_id: str) -> Optional[Payment]:
    return db.query(Payment).filter(Payment.payment_id == payment_id).first()


def to_dict(record: Any) -> Dict[str, Any]:
    """Column values of a model instance, keyed by column name."""
    return {column.name: getattr(record, column.name) for column in record.__table__.columns}
