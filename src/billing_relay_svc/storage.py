import logging
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_relay_svc.errors import StorageError
from billing_relay_svc.models.payment import Payment
from billing_relay_svc.models.subscription import Subscription


class SubscriptionStore(Protocol):
    """What the duplicate-subscription cleanup needs from the database."""

    def list_subscriptions(self) -> List[Subscription]:
        ...

    def delete_subscription(self, subscription_id: str) -> bool:
        ...


class PaymentStore(Protocol):
    """What the duplicate-payment cleanup and invoice backfill need from the database."""

    def list_payments(self) -> List[Payment]:
        ...

    def list_payments_with_invoice_url(self, invoice_url: str, payment_id_prefix: str) -> List[Payment]:
        ...

    def delete_payment(self, payment_id: str) -> bool:
        ...

    def update_invoice_url(self, payment_id: str, invoice_url: str) -> bool:
        ...


class SqlSubscriptionStore:
    """SubscriptionStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_subscriptions(self) -> List[Subscription]:
        """
        Return every subscription, most recently updated first.

        :raises StorageError: if the query fails.
        """
        try:
            return self.db.query(Subscription).order_by(Subscription.updated_at.desc()).all()
        except SQLAlchemyError as e:
            logging.error(e, exc_info=True)
            raise StorageError(f"Failed to fetch subscriptions: {e}") from e

    def delete_subscription(self, subscription_id: str) -> bool:
        return _delete_by_id(self.db, Subscription, subscription_id)


class SqlPaymentStore:
    """PaymentStore backed by a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_payments(self) -> List[Payment]:
        """
        Return every payment, newest payment date first.

        :raises StorageError: if the query fails.
        """
        try:
            return self.db.query(Payment).order_by(Payment.payment_date.desc()).all()
        except SQLAlchemyError as e:
            logging.error(e, exc_info=True)
            raise StorageError(f"Failed to fetch payments: {e}") from e

    def list_payments_with_invoice_url(self, invoice_url: str, payment_id_prefix: str) -> List[Payment]:
        """
        Return payments still pointing at ``invoice_url`` whose provider
        payment id starts with ``payment_id_prefix``.

        :raises StorageError: if the query fails.
        """
        try:
            return (
                self.db.query(Payment)
                .filter(Payment.invoice_url == invoice_url)
                .filter(Payment.payment_id.isnot(None))
                .filter(Payment.payment_id.like(f"{payment_id_prefix}%"))
                .order_by(Payment.payment_date.desc())
                .all()
            )
        except SQLAlchemyError as e:
            logging.error(e, exc_info=True)
            raise StorageError(f"Failed to fetch payments: {e}") from e

    def delete_payment(self, payment_id: str) -> bool:
        return _delete_by_id(self.db, Payment, payment_id)

    def update_invoice_url(self, payment_id: str, invoice_url: str) -> bool:
        payment: Optional[Payment] = self.db.get(Payment, payment_id)
        if payment is None:
            logging.warning(f"Payment {payment_id} disappeared before its invoice URL could be updated")
            return False
        payment.invoice_url = invoice_url
        try:
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logging.error(e, exc_info=True)
            return False


def _delete_by_id(db: Session, model, record_id: str) -> bool:
    try:
        deleted = db.query(model).filter(model.id == record_id).delete(synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Error deleting {model.__tablename__} row {record_id}: {e}", exc_info=True)
        return False
    if not deleted:
        logging.warning(f"No {model.__tablename__} row {record_id} to delete")
        return False
    return True
