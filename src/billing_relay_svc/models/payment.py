from sqlalchemy import Column, DateTime, Numeric, String

from billing_relay_svc.models.base import Base, new_id, utcnow


class Payment(Base):
    """A single charge shown in the billing history."""
    __tablename__ = 'payments'

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    email = Column(String, nullable=True, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String, nullable=True, default='EUR')
    status = Column(String, nullable=False, default='paid', index=True)
    payment_date = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    invoice_url = Column(String, nullable=True)
    # provider payment id, e.g. pi_XXX
    payment_id = Column(String, nullable=True, index=True)
    order_id = Column(String, nullable=True, index=True)
    transaction_id = Column(String, nullable=True)
    payment_method = Column(String, nullable=True, default='stripe')
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, user_id={self.user_id}, amount={self.amount}, payment_id={self.payment_id})>"
