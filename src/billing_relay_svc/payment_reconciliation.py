"""
Duplicate payment cleanup.

The sync endpoint and the webhook can both record the same charge. Payments
of one user on the same UTC day are compared; when they share a provider
identifier (or are a pair whose amounts differ by less than one unit, which
is what a tax-adjusted double write looks like) only the best row is kept.
"""
import datetime
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from itertools import combinations
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from billing_relay_svc.config import DEFAULT_ACCOUNT_PORTAL_URL, DEFAULT_PAYMENT_AMOUNTS, Settings, parse_amounts
from billing_relay_svc.models.payment import Payment
from billing_relay_svc.reconciliation import as_utc, delete_each, to_decimal
from billing_relay_svc.storage import PaymentStore

CLOSE_AMOUNT_DELTA = Decimal("1.0")


@dataclass(frozen=True)
class PaymentPolicy:
    recognized_amounts: FrozenSet[Decimal] = field(
        default_factory=lambda: parse_amounts("RECOGNIZED_PAYMENT_AMOUNTS", DEFAULT_PAYMENT_AMOUNTS)
    )
    payment_id_prefix: str = "pi_"
    placeholder_invoice_url: str = DEFAULT_ACCOUNT_PORTAL_URL

    @classmethod
    def from_settings(cls, settings: Settings) -> "PaymentPolicy":
        return cls(
            recognized_amounts=settings.recognized_payment_amounts,
            payment_id_prefix=settings.provider_payment_prefix,
            placeholder_invoice_url=settings.account_portal_url,
        )

    def has_real_invoice_url(self, payment: Payment) -> bool:
        return bool(payment.invoice_url) and payment.invoice_url != self.placeholder_invoice_url

    def rank(self, payment: Payment) -> Tuple[bool, bool, bool, Decimal, datetime.datetime]:
        """Sort key; larger means more desirable."""
        amount = to_decimal(payment.amount)
        return (
            amount is not None and amount in self.recognized_amounts,
            bool(payment.payment_id) and payment.payment_id.startswith(self.payment_id_prefix),
            self.has_real_invoice_url(payment),
            amount if amount is not None else Decimal(0),
            as_utc(payment.payment_date),
        )


@dataclass
class PaymentCleanupReport:
    duplicate_groups: int = 0
    kept_ids: List[str] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "duplicateGroups": self.duplicate_groups,
            "kept": len(self.kept_ids),
            "deleted": len(self.deleted_ids),
            "deletedIds": list(self.deleted_ids),
            "keptIds": list(self.kept_ids),
            "failures": len(self.failed_ids),
        }


def group_by_user_and_day(payments: Sequence[Payment]) -> "OrderedDict[Tuple[str, datetime.date], List[Payment]]":
    groups: "OrderedDict[Tuple[str, datetime.date], List[Payment]]" = OrderedDict()
    for payment in payments:
        key = (payment.user_id, as_utc(payment.payment_date).date())
        groups.setdefault(key, []).append(payment)
    return groups


def _shares_identifier(a: Payment, b: Payment) -> bool:
    for name in ("payment_id", "order_id", "transaction_id"):
        left, right = getattr(a, name), getattr(b, name)
        if left and right and left == right:
            return True
    return False


def is_duplicate_group(payments: Sequence[Payment]) -> bool:
    if len(payments) < 2:
        return False
    if any(_shares_identifier(a, b) for a, b in combinations(payments, 2)):
        return True
    if len(payments) == 2:
        first, second = (to_decimal(p.amount) for p in payments)
        return first is not None and second is not None and abs(first - second) < CLOSE_AMOUNT_DELTA
    return False


def select_canonical_payment(
    payments: Sequence[Payment], policy: Optional[PaymentPolicy] = None
) -> Tuple[Payment, List[Payment]]:
    if not payments:
        raise ValueError("select_canonical_payment requires at least one payment")
    policy = policy or PaymentPolicy()
    ranked = sorted(payments, key=policy.rank, reverse=True)
    return ranked[0], ranked[1:]


def cleanup_duplicate_payments(store: PaymentStore, policy: Optional[PaymentPolicy] = None) -> PaymentCleanupReport:
    """
    Delete duplicate payment rows, keeping the best row of each duplicate group.

    Every group is ranked before the first delete runs.

    :raises StorageError: if payments cannot be read; nothing is deleted then.
    """
    policy = policy or PaymentPolicy()
    payments = store.list_payments()
    if not payments:
        logging.info("[cleanup] No payments found")
        return PaymentCleanupReport()

    plan = []
    for (user_id, day), group in group_by_user_and_day(payments).items():
        if not is_duplicate_group(group):
            continue
        keep, rejected = select_canonical_payment(group, policy)
        logging.info(
            f"[cleanup] Group {user_id}_{day.isoformat()}: keeping {keep.id} "
            f"(amount: {keep.amount}, invoice_url: {(keep.invoice_url or '')[:50]})"
        )
        plan.append((keep.id, [payment.id for payment in rejected]))
    logging.info(f"[cleanup] Found {len(plan)} groups with duplicate payments")

    report = PaymentCleanupReport(duplicate_groups=len(plan))
    for keep_id, rejected_ids in plan:
        delete_each(rejected_ids, store.delete_payment, report.deleted_ids, report.failed_ids, "payment")
        report.kept_ids.append(keep_id)

    logging.info(
        f"[cleanup] Cleanup complete: deleted {len(report.deleted_ids)} duplicate payments, "
        f"kept {len(report.kept_ids)} payments"
    )
    return report
