"""
One-time fixups for legacy persisted data.

Each migration works on raw record dicts (before pydantic decoding), detects
whether a record needs it and rewrites it in place. Running the whole chain
again on migrated data changes nothing, so callers re-persist only when
migrate_records() reports a change.

Migrations:
  - color_tag_key:        legacy "color" key -> "colorTag"
  - canonical_enum_codes: display-cased enum values ("Monthly") -> codes ("MONTHLY")
  - default_reminder_time: missing "reminderTime" -> "09:00"
  - yearly_plan_cycle:    known yearly plans stored with a monthly billing cycle
                          but yearly repetition -> yearly billing cycle
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable

from subtracker.domain.subscription import (
    BILLING_CYCLE_MONTHLY,
    BILLING_CYCLE_YEARLY,
    DEFAULT_REMINDER_TIME,
    REPETITION_YEARLY,
)
from subtracker.infrastructure.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)

LEGACY_SUBSCRIPTIONS_KEY = "LegacySubscriptions"
LEGACY_KEY_MIGRATION_FLAG = "LegacyKeyMigrationCompleted"

# Plans billed once a year that early versions stored with a monthly cycle
KNOWN_YEARLY_PLANS = frozenset({"Adobe Creative Cloud"})

_ENUM_FIELDS = ("billingCycle", "repetitionType", "category")


@dataclass(frozen=True)
class RecordMigration:
    name: str
    applies: Callable[[dict], bool]
    apply: Callable[[dict], None]


def _has_legacy_color(r: dict) -> bool:
    return "color" in r and "colorTag" not in r


def _rename_color(r: dict) -> None:
    r["colorTag"] = r.pop("color")


def _has_display_cased_enum(r: dict) -> bool:
    return any(
        isinstance(r.get(f), str) and r[f] != r[f].upper()
        for f in _ENUM_FIELDS
    )


def _canonicalize_enums(r: dict) -> None:
    for f in _ENUM_FIELDS:
        if isinstance(r.get(f), str):
            r[f] = r[f].upper()


def _missing_reminder_time(r: dict) -> bool:
    return not r.get("reminderTime")


def _set_default_reminder_time(r: dict) -> None:
    r["reminderTime"] = DEFAULT_REMINDER_TIME.strftime("%H:%M")


def _is_misfiled_yearly_plan(r: dict) -> bool:
    return (
        r.get("name") in KNOWN_YEARLY_PLANS
        and r.get("billingCycle") == BILLING_CYCLE_MONTHLY
        and r.get("repetitionType") == REPETITION_YEARLY
    )


def _set_yearly_cycle(r: dict) -> None:
    r["billingCycle"] = BILLING_CYCLE_YEARLY


# Order matters: enum codes must be canonical before the cycle fixup compares them
MIGRATIONS = [
    RecordMigration("color_tag_key", _has_legacy_color, _rename_color),
    RecordMigration("canonical_enum_codes", _has_display_cased_enum, _canonicalize_enums),
    RecordMigration("default_reminder_time", _missing_reminder_time, _set_default_reminder_time),
    RecordMigration("yearly_plan_cycle", _is_misfiled_yearly_plan, _set_yearly_cycle),
]


def migrate_records(records: list[Any]) -> int:
    """Apply every pending migration to records in place.

    Returns the number of (record, migration) fixups applied; 0 means the
    data was already current.
    """
    applied = 0
    for record in records:
        if not isinstance(record, dict):
            continue
        for migration in MIGRATIONS:
            if migration.applies(record):
                migration.apply(record)
                applied += 1
                logger.info(
                    "Migration %s applied to subscription %s",
                    migration.name, record.get("id"),
                )
    return applied


def migrate_legacy_key(store: KeyValueStore, subscriptions_key: str) -> bool:
    """Copy data saved under the legacy key into the primary key (one time).

    Only copies when the primary key is empty. Returns True if data was copied.
    """
    if store.get(LEGACY_KEY_MIGRATION_FLAG):
        return False

    copied = False
    old_data = store.get(LEGACY_SUBSCRIPTIONS_KEY)
    if old_data is not None:
        if store.get(subscriptions_key) is None:
            store.set(subscriptions_key, old_data)
            copied = True
            logger.info("Migrated subscriptions from legacy storage key")
        store.set(LEGACY_KEY_MIGRATION_FLAG, True)
    return copied
