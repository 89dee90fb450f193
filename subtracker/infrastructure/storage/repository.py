"""
Subscription repository: load/save contract for the subscription collection.

Persisted format: JSON list of records (camelCase keys) under one namespaced
key in the primary store. Every successful serialization is also written to a
local mirror key; load falls back primary -> mirror -> empty.
"""
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from subtracker.domain.subscription import (
    BILLING_CYCLES,
    CATEGORY_DISPLAY,
    DEFAULT_COLOR,
    DEFAULT_REMINDER_TIME,
    REPETITION_TYPES,
    Subscription,
)
from subtracker.infrastructure.storage.kv_store import KeyValueStore
from subtracker.infrastructure.storage.legacy_migrations import migrate_legacy_key, migrate_records

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_KEY = "SavedSubscriptions"
MIRROR_KEY = "SavedSubscriptions_LocalBackup"

SOURCE_PRIMARY = "primary"
SOURCE_MIRROR = "mirror"
SOURCE_EMPTY = "empty"


class SubscriptionRecord(BaseModel):
    """Persisted shape of a Subscription."""
    model_config = ConfigDict(populate_by_name=True)

    id: UUID
    name: str
    price: Decimal
    billing_cycle: str = Field(alias="billingCycle")
    category: str
    next_billing_date: date = Field(alias="nextBillingDate")
    is_active: bool = Field(True, alias="isActive")
    notes: str = ""
    color: str = Field(DEFAULT_COLOR, alias="colorTag")
    repetition_type: str = Field(alias="repetitionType")
    is_paid_for_current_month: bool = Field(False, alias="isPaidForCurrentMonth")
    reminder_time: time = Field(DEFAULT_REMINDER_TIME, alias="reminderTime")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        if not v.is_finite() or v < 0:
            raise ValueError(f"price must be a finite non-negative amount: {v}")
        return v

    @field_validator("billing_cycle")
    @classmethod
    def validate_cycle(cls, v: str) -> str:
        if v not in BILLING_CYCLES:
            raise ValueError(f"unknown billing cycle: {v}")
        return v

    @field_validator("repetition_type")
    @classmethod
    def validate_repetition(cls, v: str) -> str:
        if v not in REPETITION_TYPES:
            raise ValueError(f"unknown repetition type: {v}")
        return v

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        if v not in CATEGORY_DISPLAY:
            raise ValueError(f"unknown category: {v}")
        return v

    @classmethod
    def from_domain(cls, sub: Subscription) -> "SubscriptionRecord":
        return cls(
            id=sub.id,
            name=sub.name,
            price=sub.price,
            billing_cycle=sub.billing_cycle,
            category=sub.category,
            next_billing_date=sub.next_billing_date,
            is_active=sub.is_active,
            notes=sub.notes,
            color=sub.color,
            repetition_type=sub.repetition_type,
            is_paid_for_current_month=sub.is_paid_for_current_month,
            reminder_time=sub.reminder_time,
        )

    def to_domain(self) -> Subscription:
        return Subscription(
            id=self.id,
            name=self.name,
            price=self.price,
            billing_cycle=self.billing_cycle,
            category=self.category,
            next_billing_date=self.next_billing_date,
            is_active=self.is_active,
            notes=self.notes,
            color=self.color,
            repetition_type=self.repetition_type,
            is_paid_for_current_month=self.is_paid_for_current_month,
            reminder_time=self.reminder_time,
        )


_records_adapter = TypeAdapter(list[SubscriptionRecord])


def encode_subscriptions(subs: list[Subscription]) -> list[dict]:
    return [
        SubscriptionRecord.from_domain(s).model_dump(mode="json", by_alias=True)
        for s in subs
    ]


def decode_subscriptions(raw: Any) -> tuple[list[Subscription], int]:
    """Decode a persisted document. Returns (subscriptions, migration fixups applied).

    Raises ValueError / pydantic.ValidationError on malformed data.
    """
    if isinstance(raw, (str, bytes)):
        raw = json.loads(raw)
    if not isinstance(raw, list):
        raise ValueError("subscriptions document must be a JSON array")
    records = copy.deepcopy(raw)
    fixups = migrate_records(records)
    decoded = _records_adapter.validate_python(records)
    return [r.to_domain() for r in decoded], fixups


@dataclass
class LoadResult:
    subscriptions: list[Subscription] = field(default_factory=list)
    source: str = SOURCE_EMPTY
    migrated: bool = False


class SubscriptionRepository:
    """
    Load/save for the ordered subscription collection.

    Never raises out of load() or save(): failures are logged and reported
    through the return value.
    """

    def __init__(self, primary: KeyValueStore, mirror: KeyValueStore | None = None):
        self.primary = primary
        self.mirror = mirror

    def load(self) -> LoadResult:
        try:
            migrate_legacy_key(self.primary, SUBSCRIPTIONS_KEY)
        except SQLAlchemyError:
            logger.exception("Legacy storage key migration failed")

        sources = [(SOURCE_PRIMARY, self.primary, SUBSCRIPTIONS_KEY)]
        if self.mirror is not None:
            sources.append((SOURCE_MIRROR, self.mirror, MIRROR_KEY))

        for source, store, key in sources:
            try:
                raw = store.get(key)
            except SQLAlchemyError:
                logger.exception("Failed to read subscriptions from %s store", source)
                continue
            if raw is None:
                continue
            try:
                subs, fixups = decode_subscriptions(raw)
            except (ValidationError, ValueError, TypeError):
                logger.exception("Failed to decode subscriptions from %s store", source)
                continue
            logger.info("Loaded %d subscriptions from %s store", len(subs), source)
            return LoadResult(subscriptions=subs, source=source, migrated=fixups > 0)

        logger.info("No subscriptions found in storage")
        return LoadResult()

    def save(self, subs: list[Subscription]) -> bool:
        """Persist subs to primary and mirror. Returns False if the primary write failed."""
        try:
            data = encode_subscriptions(subs)
        except (ValidationError, ValueError, TypeError):
            logger.exception("Failed to serialize subscriptions")
            return False

        saved = True
        try:
            self.primary.set(SUBSCRIPTIONS_KEY, data)
        except SQLAlchemyError:
            logger.exception("Failed to save subscriptions to primary store")
            saved = False

        if self.mirror is not None:
            try:
                self.mirror.set(MIRROR_KEY, data)
            except SQLAlchemyError:
                logger.exception("Failed to save subscriptions to local mirror")

        if saved:
            logger.debug("Saved %d subscriptions", len(subs))
        return saved
