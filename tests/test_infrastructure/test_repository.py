"""
Tests for the key-value store and the subscription repository
"""
from datetime import date, time
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from subtracker.domain.subscription import BILLING_CYCLE_YEARLY, CATEGORY_STREAMING, Subscription
from subtracker.infrastructure.storage.kv_store import SqlKeyValueStore
from subtracker.infrastructure.storage.repository import (
    MIRROR_KEY,
    SOURCE_EMPTY,
    SOURCE_MIRROR,
    SOURCE_PRIMARY,
    SUBSCRIPTIONS_KEY,
    SubscriptionRepository,
    decode_subscriptions,
    encode_subscriptions,
)


def _failing_store():
    store = Mock()
    store.get.side_effect = OperationalError("SELECT", {}, Exception("db down"))
    store.set.side_effect = OperationalError("UPDATE", {}, Exception("db down"))
    return store


class TestSqlKeyValueStore:
    def test_set_get_overwrite_delete(self, primary_kv):
        assert primary_kv.get("k") is None
        primary_kv.set("k", {"a": 1})
        assert primary_kv.get("k") == {"a": 1}
        primary_kv.set("k", [1, 2])
        assert primary_kv.get("k") == [1, 2]
        primary_kv.delete("k")
        assert primary_kv.get("k") is None

    def test_namespaces_are_isolated(self, primary_kv):
        other = SqlKeyValueStore(primary_kv.session_factory, "other")
        primary_kv.set("k", "mine")
        assert other.get("k") is None


class TestRecordFormat:
    def test_camel_case_keys(self):
        sub = Subscription(name="Netflix", price=Decimal("15.99"), next_billing_date=date(2026, 3, 20))
        record = encode_subscriptions([sub])[0]
        assert set(record) == {
            "id", "name", "price", "billingCycle", "category", "nextBillingDate",
            "isActive", "notes", "colorTag", "repetitionType",
            "isPaidForCurrentMonth", "reminderTime",
        }
        assert record["nextBillingDate"] == "2026-03-20"
        assert record["price"] == "15.99"

    def test_decode_preserves_fields(self):
        sub = Subscription(
            name="Adobe", price=Decimal("599.88"), billing_cycle=BILLING_CYCLE_YEARLY,
            category=CATEGORY_STREAMING, next_billing_date=date(2026, 9, 1),
            notes="work", color="red", reminder_time=time(20, 30),
        )
        decoded, fixups = decode_subscriptions(encode_subscriptions([sub]))
        assert decoded == [sub]
        assert fixups == 0

    def test_decode_accepts_json_text(self):
        raw = '[{"id": "9b2f6a1e-3c1d-4f8e-a5b6-1234567890ab", "name": "Spotify", "price": "9.99",' \
              ' "billingCycle": "MONTHLY", "category": "MUSIC", "nextBillingDate": "2026-03-20",' \
              ' "repetitionType": "MONTHLY", "reminderTime": "09:00"}]'
        decoded, _ = decode_subscriptions(raw)
        assert decoded[0].name == "Spotify"
        assert decoded[0].price == Decimal("9.99")
        assert decoded[0].is_active is True

    def test_decode_rejects_unknown_cycle(self):
        with pytest.raises(ValueError):
            decode_subscriptions([{
                "id": "9b2f6a1e-3c1d-4f8e-a5b6-1234567890ab", "name": "x", "price": "1",
                "billingCycle": "DAILY", "category": "OTHER", "nextBillingDate": "2026-03-20",
                "repetitionType": "MONTHLY",
            }])

    def test_decode_rejects_non_list(self):
        with pytest.raises(ValueError):
            decode_subscriptions({"name": "x"})

    @pytest.mark.parametrize("overrides", [
        {"price": "-5"},
        {"price": "NaN"},
        {"name": "   "},
        {"name": ""},
    ])
    def test_decode_rejects_broken_invariants(self, overrides):
        record = {
            "id": "9b2f6a1e-3c1d-4f8e-a5b6-1234567890ab", "name": "x", "price": "1",
            "billingCycle": "MONTHLY", "category": "OTHER", "nextBillingDate": "2026-03-20",
            "repetitionType": "MONTHLY",
        }
        record.update(overrides)
        with pytest.raises(ValueError):
            decode_subscriptions([record])


class TestRepository:
    def test_save_writes_primary_and_mirror(self, repository, primary_kv, mirror_kv, make_sub):
        assert repository.save([make_sub()]) is True
        assert primary_kv.get(SUBSCRIPTIONS_KEY) == mirror_kv.get(MIRROR_KEY)
        assert len(primary_kv.get(SUBSCRIPTIONS_KEY)) == 1

    def test_load_round_trip_preserves_order(self, repository, make_sub):
        subs = [make_sub(name="A"), make_sub(name="B"), make_sub(name="C")]
        repository.save(subs)
        result = repository.load()
        assert result.source == SOURCE_PRIMARY
        assert [s.name for s in result.subscriptions] == ["A", "B", "C"]
        assert result.migrated is False

    def test_load_empty(self, repository):
        result = repository.load()
        assert result.source == SOURCE_EMPTY
        assert result.subscriptions == []

    def test_corrupt_primary_falls_back_to_mirror(self, repository, primary_kv, make_sub):
        repository.save([make_sub(name="Backup")])
        primary_kv.set(SUBSCRIPTIONS_KEY, "not json at all")
        result = repository.load()
        assert result.source == SOURCE_MIRROR
        assert result.subscriptions[0].name == "Backup"

    def test_invalid_primary_record_falls_back_to_mirror(self, repository, primary_kv, make_sub):
        """Отрицательная цена в основном хранилище: весь документ отвергается"""
        repository.save([make_sub(name="Backup")])
        document = primary_kv.get(SUBSCRIPTIONS_KEY)
        document[0]["price"] = "-15.99"
        primary_kv.set(SUBSCRIPTIONS_KEY, document)

        result = repository.load()
        assert result.source == SOURCE_MIRROR
        assert result.subscriptions[0].price == Decimal("15.99")

    def test_unreadable_primary_falls_back_to_mirror(self, mirror_kv, make_sub):
        SubscriptionRepository(mirror_kv, mirror_kv).save([make_sub(name="Local")])
        repo = SubscriptionRepository(_failing_store(), mirror_kv)
        result = repo.load()
        assert result.source == SOURCE_MIRROR
        assert result.subscriptions[0].name == "Local"

    def test_everything_corrupt_gives_empty(self, repository, primary_kv, mirror_kv):
        primary_kv.set(SUBSCRIPTIONS_KEY, {"broken": True})
        mirror_kv.set(MIRROR_KEY, "[")
        result = repository.load()
        assert result.source == SOURCE_EMPTY
        assert result.subscriptions == []

    def test_primary_write_failure_still_updates_mirror(self, mirror_kv, make_sub):
        repo = SubscriptionRepository(_failing_store(), mirror_kv)
        assert repo.save([make_sub(name="Offline")]) is False
        assert mirror_kv.get(MIRROR_KEY)[0]["name"] == "Offline"

    def test_legacy_record_reports_migration(self, repository, primary_kv):
        primary_kv.set(SUBSCRIPTIONS_KEY, [{
            "id": "9b2f6a1e-3c1d-4f8e-a5b6-1234567890ab", "name": "Old", "price": "5",
            "billingCycle": "Monthly", "category": "Other", "nextBillingDate": "2026-03-20",
            "repetitionType": "Monthly", "color": "green",
        }])
        result = repository.load()
        assert result.migrated is True
        sub = result.subscriptions[0]
        assert sub.color == "green"
        assert sub.reminder_time == time(9, 0)
