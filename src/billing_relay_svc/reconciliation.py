"""
Duplicate subscription cleanup.

Upstream writes (webhook deliveries, client-side syncs) are not idempotent per
user, so one user can end up with several subscription rows. The policy here
picks the one row worth keeping per user; the driver deletes the others.
"""
import datetime
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from billing_relay_svc.config import DEFAULT_SUBSCRIPTION_AMOUNTS, Settings, parse_amounts
from billing_relay_svc.models.subscription import Subscription
from billing_relay_svc.storage import SubscriptionStore

_EPOCH = datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)


@dataclass(frozen=True)
class SubscriptionPolicy:
    """Ranking configuration for picking the canonical subscription of a user."""

    recognized_amounts: FrozenSet[Decimal] = field(
        default_factory=lambda: parse_amounts("RECOGNIZED_SUBSCRIPTION_AMOUNTS", DEFAULT_SUBSCRIPTION_AMOUNTS)
    )
    provider_id_prefix: str = "sub_"

    @classmethod
    def from_settings(cls, settings: Settings) -> "SubscriptionPolicy":
        return cls(
            recognized_amounts=settings.recognized_subscription_amounts,
            provider_id_prefix=settings.provider_subscription_prefix,
        )

    def is_recognized_amount(self, amount: Optional[Decimal]) -> bool:
        return amount is not None and amount in self.recognized_amounts

    def has_provider_id(self, record: Subscription) -> bool:
        provider_id = record.provider_subscription_id
        return bool(provider_id) and provider_id.startswith(self.provider_id_prefix)

    def rank(self, record: Subscription) -> Tuple[bool, bool, Decimal, datetime.datetime]:
        """Sort key; larger means more desirable."""
        amount = to_decimal(record.amount_paid)
        recognized = self.is_recognized_amount(amount)
        return (
            recognized,
            self.has_provider_id(record),
            # only compared when both records carry a recognized amount
            amount if recognized else Decimal(0),
            as_utc(record.updated_at),
        )


@dataclass
class ReconciliationReport:
    groups_with_duplicates: int = 0
    kept_ids: List[str] = field(default_factory=list)
    deleted_ids: List[str] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def kept(self) -> int:
        return len(self.kept_ids)

    @property
    def deleted(self) -> int:
        return len(self.deleted_ids)

    @property
    def failures(self) -> int:
        return len(self.failed_ids)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "groupsWithDuplicates": self.groups_with_duplicates,
            "kept": self.kept,
            "deleted": self.deleted,
            "deletedIds": list(self.deleted_ids),
            "keptIds": list(self.kept_ids),
            "failures": self.failures,
        }


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def as_utc(value: Optional[datetime.datetime]) -> datetime.datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        # SQLite hands back naive datetimes; stored values are UTC
        return value.replace(tzinfo=datetime.timezone.utc)
    return value


def select_canonical(
    records: Sequence[Subscription],
    policy: Optional[SubscriptionPolicy] = None,
) -> Tuple[Subscription, List[Subscription]]:
    """
    Pick the subscription to keep out of one user's duplicates.

    :param records: Non-empty sequence of subscriptions sharing one ``user_id``.
    :param policy: Ranking configuration; defaults to the built-in price list.
    :return: ``(canonical, rejected)``; ``rejected`` keeps the ranking order.
    :raises ValueError: if ``records`` is empty or mixes users.
    """
    if not records:
        raise ValueError("select_canonical requires at least one record")
    user_ids = {record.user_id for record in records}
    if len(user_ids) > 1:
        raise ValueError(f"select_canonical expects records of a single user, got {sorted(user_ids)}")
    if len(records) == 1:
        return records[0], []

    policy = policy or SubscriptionPolicy()
    # sorted() is stable, also with reverse=True
    ranked = sorted(records, key=policy.rank, reverse=True)
    return ranked[0], ranked[1:]


def group_by_user(records: Iterable[Subscription]) -> "OrderedDict[str, List[Subscription]]":
    groups: "OrderedDict[str, List[Subscription]]" = OrderedDict()
    for record in records:
        groups.setdefault(record.user_id, []).append(record)
    return groups


def delete_each(
    record_ids: Iterable[str],
    delete: Callable[[str], bool],
    deleted_ids: List[str],
    failed_ids: List[str],
    label: str,
) -> None:
    """
    Delete records one at a time by id; a failure is logged and the loop moves on.

    Only plain ids are handled here. A failed delete rolls the session back,
    which expires every loaded model instance.
    """
    for record_id in record_ids:
        try:
            ok = delete(record_id)
        except Exception as e:
            logging.error(f"Error deleting {label} {record_id}: {e}", exc_info=True)
            ok = False
        if ok:
            deleted_ids.append(record_id)
        else:
            logging.error(f"Could not delete {label} {record_id}")
            failed_ids.append(record_id)


def plan_cleanup(
    all_records: Sequence[Subscription],
    policy: Optional[SubscriptionPolicy] = None,
) -> List[Tuple[str, List[str]]]:
    """
    Rank every duplicate group up front.

    :return: ``(canonical_id, rejected_ids)`` per user with duplicates, in
        first-seen user order.
    """
    policy = policy or SubscriptionPolicy()
    plan = []
    for group in group_by_user(all_records).values():
        if len(group) < 2:
            continue
        canonical, rejected = select_canonical(group, policy)
        logging.info(
            f"[cleanup] User {canonical.user_id}: keeping {canonical.id} "
            f"(amount: {canonical.amount_paid}, provider_subscription_id: {canonical.provider_subscription_id})"
        )
        for record in rejected:
            logging.info(
                f"[cleanup] User {record.user_id}: deleting {record.id} "
                f"(amount: {record.amount_paid}, provider_subscription_id: {record.provider_subscription_id})"
            )
        plan.append((canonical.id, [record.id for record in rejected]))
    return plan


def reconcile_all(
    all_records: Sequence[Subscription],
    store: SubscriptionStore,
    policy: Optional[SubscriptionPolicy] = None,
) -> ReconciliationReport:
    """
    Keep one subscription per user and delete the rest through ``store``.

    All groups are ranked before the first delete runs. Deletions are best
    effort: a failed delete is counted in the report and the remaining
    records and groups are still processed.
    """
    plan = plan_cleanup(all_records, policy)
    logging.info(f"[cleanup] Found {len(plan)} users with duplicate subscriptions")

    report = ReconciliationReport(groups_with_duplicates=len(plan))
    for canonical_id, rejected_ids in plan:
        delete_each(rejected_ids, store.delete_subscription, report.deleted_ids, report.failed_ids, "subscription")
        report.kept_ids.append(canonical_id)

    logging.info(
        f"[cleanup] Cleanup complete: deleted {report.deleted} duplicate subscriptions, "
        f"kept {report.kept} subscriptions, {report.failures} failures"
    )
    return report


class CleanupDriver:
    """Loads every subscription from ``store`` and runs :func:`reconcile_all` over them."""

    def __init__(self, store: SubscriptionStore, policy: Optional[SubscriptionPolicy] = None) -> None:
        self.store = store
        self.policy = policy or SubscriptionPolicy()

    def run(self) -> ReconciliationReport:
        # a failed bulk read raises StorageError before anything is deleted
        records = self.store.list_subscriptions()
        if not records:
            logging.info("[cleanup] No subscriptions found")
            return ReconciliationReport()
        return reconcile_all(records, self.store, self.policy)
