import datetime
from decimal import Decimal

import pytest
from sqlalchemy import text

from billing_relay_svc.errors import StorageError
from billing_relay_svc.models.subscription import Subscription
from billing_relay_svc.reconciliation import (
    CleanupDriver,
    SubscriptionPolicy,
    group_by_user,
    reconcile_all,
    select_canonical,
)
from billing_relay_svc.storage import SqlSubscriptionStore

T0 = datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
T1 = T0 + datetime.timedelta(hours=1)
T2 = T0 + datetime.timedelta(hours=2)


def make_subscription(id, user_id="u1", amount="3.49", provider_id=None, updated_at=T0):
    return Subscription(
        id=str(id),
        user_id=user_id,
        plan_type="monthly",
        status="active",
        amount_paid=Decimal(amount) if amount is not None else None,
        provider_subscription_id=provider_id,
        updated_at=updated_at,
    )


class FakeStore:
    """In-memory SubscriptionStore that can be told to fail on given ids."""

    def __init__(self, records, failing_ids=(), raising_ids=()):
        self.records = list(records)
        self.failing_ids = set(failing_ids)
        self.raising_ids = set(raising_ids)
        self.delete_calls = []

    def list_subscriptions(self):
        return sorted(self.records, key=lambda r: r.updated_at, reverse=True)

    def delete_subscription(self, subscription_id):
        self.delete_calls.append(subscription_id)
        if subscription_id in self.raising_ids:
            raise RuntimeError("connection reset")
        if subscription_id in self.failing_ids:
            return False
        self.records = [r for r in self.records if r.id != subscription_id]
        return True


def test_correct_amount_wins():
    wrong = make_subscription(1, amount="3.00", updated_at=T2)
    right = make_subscription(2, amount="3.49", updated_at=T0)
    canonical, rejected = select_canonical([wrong, right])
    assert canonical is right
    assert rejected == [wrong]


def test_provider_id_breaks_tie_on_amount():
    linked = make_subscription(1, provider_id="sub_abc", updated_at=T0)
    unlinked = make_subscription(2, provider_id=None, updated_at=T2)
    canonical, _ = select_canonical([unlinked, linked])
    assert canonical is linked


def test_provider_id_without_recognized_prefix_does_not_count():
    generated = make_subscription(1, provider_id="sync_12345", updated_at=T2)
    linked = make_subscription(2, provider_id="sub_abc", updated_at=T0)
    canonical, _ = select_canonical([generated, linked])
    assert canonical is linked


def test_recency_breaks_remaining_ties():
    older = make_subscription(1, updated_at=T0)
    newer = make_subscription(2, updated_at=T1)
    canonical, rejected = select_canonical([older, newer])
    assert canonical is newer
    assert rejected == [older]


def test_higher_recognized_amount_wins_over_recency():
    base = make_subscription(1, amount="3.49", updated_at=T2)
    taxed = make_subscription(2, amount="3.50", updated_at=T0)
    canonical, _ = select_canonical([base, taxed])
    assert canonical is taxed


def test_unrecognized_amounts_fall_through_to_recency():
    high = make_subscription(1, amount="99.00", updated_at=T0)
    low = make_subscription(2, amount="1.00", updated_at=T1)
    canonical, _ = select_canonical([high, low])
    assert canonical is low


def test_amounts_compare_as_decimals():
    policy = SubscriptionPolicy()
    float_amount = make_subscription(1, amount=None)
    float_amount.amount_paid = 3.5
    assert policy.is_recognized_amount(Decimal("3.5"))
    assert policy.rank(float_amount)[0] is True


def test_missing_timestamp_ranks_last():
    undated = make_subscription(1, updated_at=None)
    dated = make_subscription(2, updated_at=T0)
    canonical, _ = select_canonical([undated, dated])
    assert canonical is dated


def test_naive_and_aware_timestamps_are_comparable():
    naive = make_subscription(1, updated_at=T2.replace(tzinfo=None))
    aware = make_subscription(2, updated_at=T1)
    canonical, _ = select_canonical([aware, naive])
    assert canonical is naive


def test_equal_records_keep_input_order():
    records = [make_subscription(i) for i in range(4)]
    canonical, rejected = select_canonical(records)
    assert canonical is records[0]
    assert rejected == records[1:]


def test_singleton_is_canonical():
    only = make_subscription(1, amount="0.01")
    assert select_canonical([only]) == (only, [])


def test_empty_input_is_rejected():
    with pytest.raises(ValueError):
        select_canonical([])


def test_mixed_users_are_rejected():
    with pytest.raises(ValueError):
        select_canonical([make_subscription(1, user_id="u1"), make_subscription(2, user_id="u2")])


def test_custom_whitelist_is_used():
    policy = SubscriptionPolicy(recognized_amounts=frozenset({Decimal("4.99")}), provider_id_prefix="sub_")
    old_price = make_subscription(1, amount="3.49", updated_at=T2)
    new_price = make_subscription(2, amount="4.99", updated_at=T0)
    canonical, _ = select_canonical([old_price, new_price], policy)
    assert canonical is new_price


def test_group_by_user_preserves_first_seen_order():
    records = [
        make_subscription(1, user_id="b"),
        make_subscription(2, user_id="a"),
        make_subscription(3, user_id="b"),
    ]
    groups = group_by_user(records)
    assert list(groups) == ["b", "a"]
    assert [r.id for r in groups["b"]] == ["1", "3"]


def test_scenario_wrong_amount_without_provider_id_is_deleted():
    records = [
        make_subscription(1, amount="3.00", provider_id=None, updated_at=T0),
        make_subscription(2, amount="3.49", provider_id="sub_1", updated_at=T1),
    ]
    store = FakeStore(records)
    report = reconcile_all(store.list_subscriptions(), store)
    assert report.kept_ids == ["2"]
    assert report.deleted_ids == ["1"]
    assert report.groups_with_duplicates == 1


def test_scenario_three_records_keep_newest():
    records = [
        make_subscription("t0", user_id="u2", amount="8.90", updated_at=T0),
        make_subscription("t1", user_id="u2", amount="8.90", updated_at=T1),
        make_subscription("t2", user_id="u2", amount="8.90", updated_at=T2),
    ]
    store = FakeStore(records)
    report = CleanupDriver(store).run()
    assert report.kept_ids == ["t2"]
    assert sorted(report.deleted_ids) == ["t0", "t1"]


def test_scenario_no_duplicates():
    records = [make_subscription(i, user_id=f"user-{i}", amount="0.50") for i in range(5)]
    store = FakeStore(records)
    report = CleanupDriver(store).run()
    assert report.as_dict() == {
        "groupsWithDuplicates": 0,
        "kept": 0,
        "deleted": 0,
        "deletedIds": [],
        "keptIds": [],
        "failures": 0,
    }
    assert store.delete_calls == []


def test_second_run_deletes_nothing():
    records = [
        make_subscription(1, user_id="u1", updated_at=T0),
        make_subscription(2, user_id="u1", updated_at=T1),
        make_subscription(3, user_id="u2", amount="3.00"),
        make_subscription(4, user_id="u2", amount="8.90"),
        make_subscription(5, user_id="u3"),
    ]
    store = FakeStore(records)
    first = CleanupDriver(store).run()
    second = CleanupDriver(store).run()
    assert first.deleted == 2
    assert second.deleted == 0
    assert second.groups_with_duplicates == 0


def test_delete_failures_are_isolated():
    records = [
        make_subscription("keep-a", user_id="a", updated_at=T2),
        make_subscription("fail-a", user_id="a", updated_at=T1),
        make_subscription("drop-a", user_id="a", updated_at=T0),
        make_subscription("keep-b", user_id="b", updated_at=T2),
        make_subscription("boom-b", user_id="b", updated_at=T0),
    ]
    store = FakeStore(records, failing_ids={"fail-a"}, raising_ids={"boom-b"})
    report = CleanupDriver(store).run()
    assert report.kept_ids == ["keep-a", "keep-b"]
    assert report.deleted_ids == ["drop-a"]
    assert report.failures == 2
    assert set(store.delete_calls) == {"fail-a", "drop-a", "boom-b"}


def test_empty_store_is_a_zero_effect_success():
    report = CleanupDriver(FakeStore([])).run()
    assert report.deleted == 0
    assert report.groups_with_duplicates == 0


def test_bulk_read_failure_deletes_nothing():
    class BrokenStore(FakeStore):
        def list_subscriptions(self):
            raise StorageError("Failed to fetch subscriptions")

    store = BrokenStore([make_subscription(1), make_subscription(2)])
    with pytest.raises(StorageError):
        CleanupDriver(store).run()
    assert store.delete_calls == []


def test_sql_store_round_trip(db_session):
    db_session.add_all([
        make_subscription(1, user_id="u1", amount="3.00", updated_at=T0),
        make_subscription(2, user_id="u1", amount="3.49", provider_id="sub_1", updated_at=T1),
        make_subscription(3, user_id="u2", updated_at=T0),
    ])
    db_session.commit()

    store = SqlSubscriptionStore(db_session)
    report = CleanupDriver(store).run()

    assert report.deleted_ids == ["1"]
    remaining = {s.id for s in db_session.query(Subscription).all()}
    assert remaining == {"2", "3"}
    assert CleanupDriver(store).run().deleted == 0


def test_sql_store_delete_failures_do_not_reload_records(db_session):
    class TableDroppingStore(SqlSubscriptionStore):
        def delete_subscription(self, subscription_id):
            self.db.execute(text("DROP TABLE IF EXISTS subscriptions"))
            return super().delete_subscription(subscription_id)

    db_session.add_all([
        make_subscription("a-keep", user_id="a", updated_at=T2),
        make_subscription("a-drop", user_id="a", updated_at=T0),
        make_subscription("b-keep", user_id="b", updated_at=T1),
        make_subscription("b-drop", user_id="b", updated_at=T0),
    ])
    db_session.commit()

    report = CleanupDriver(TableDroppingStore(db_session)).run()

    assert report.failures == 2
    assert report.deleted == 0
    assert report.kept_ids == ["a-keep", "b-keep"]
    assert report.failed_ids == ["a-drop", "b-drop"]


def test_sql_store_delete_of_missing_row_is_not_counted(db_session):
    assert SqlSubscriptionStore(db_session).delete_subscription("missing") is False
