from sqlalchemy import Column, Date, DateTime, Numeric, String

from billing_relay_svc.models.base import Base, new_id, utcnow


class Subscription(Base):
    """
    One user's entitlement state, mirrored from the payment provider.

    ``user_id`` is not unique: concurrent webhook deliveries and retried
    client syncs can leave several rows for one user until the duplicate
    cleanup runs.
    """
    __tablename__ = 'subscriptions'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    email = Column(String, nullable=True, index=True)
    plan_type = Column(String, nullable=False, default='monthly')
    status = Column(String, nullable=False, default='active', index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    next_billing_date = Column(Date, nullable=True)
    amount_paid = Column(Numeric(10, 2), nullable=True)
    currency = Column(String, nullable=True, default='EUR')
    payment_method = Column(String, nullable=True, default='stripe')
    provider_subscription_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, amount_paid={self.amount_paid}, "
            f"provider_subscription_id={self.provider_subscription_id}, status={self.status})>"
        )
