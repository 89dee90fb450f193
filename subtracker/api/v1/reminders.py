"""
Reminder API endpoints: registered reminders, reminder actions, deep links
"""
from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from subtracker.api.deps import get_action_handler, get_app_settings, get_reminders, get_store
from subtracker.application.deep_links import resolve_subscription_link
from subtracker.application.reminders import ReminderActionHandler, ReminderScheduler
from subtracker.application.subscriptions import SubscriptionStore
from subtracker.config import Settings


router = APIRouter(prefix="/api/v1/reminders", tags=["reminders"])


# === Request/Response models ===

class ReminderResponse(BaseModel):
    identifier: str
    subscription_id: UUID
    fire_at: datetime
    payload: dict[str, Any]


class ReminderActionRequest(BaseModel):
    action: str  # MARK_AS_PAID, VIEW_DETAILS, SNOOZE; unknown actions are ignored
    payload: dict[str, Any]


class ReminderActionResponse(BaseModel):
    action: str
    subscription_id: UUID | None
    handled: bool
    deep_link: str | None = None
    snoozed_until: datetime | None = None


class PendingActionResponse(BaseModel):
    action_id: int
    action: str
    subscription_id: str
    created_at: datetime


class DeepLinkRequest(BaseModel):
    url: str


class DeepLinkResponse(BaseModel):
    subscription_id: UUID
    name: str


# === Endpoints ===

@router.get("/", response_model=list[ReminderResponse])
def list_reminders(reminders: ReminderScheduler = Depends(get_reminders)):
    """Напоминания, зарегистрированные при последнем обновлении"""
    return [
        ReminderResponse(
            identifier=r.identifier,
            subscription_id=r.subscription_id,
            fire_at=r.fire_at,
            payload=r.payload,
        )
        for r in reminders.registered
    ]


@router.post("/actions", response_model=ReminderActionResponse)
def handle_action(
    req: ReminderActionRequest,
    handler: ReminderActionHandler = Depends(get_action_handler),
):
    """Обработать действие из напоминания (повторы в пределах 2 секунд игнорируются)"""
    outcome = handler.handle(req.action, req.payload)
    return ReminderActionResponse(
        action=outcome.action,
        subscription_id=outcome.subscription_id,
        handled=outcome.handled,
        deep_link=outcome.deep_link,
        snoozed_until=outcome.reminder.fire_at if outcome.reminder else None,
    )


@router.post("/pending-action", response_model=PendingActionResponse | None)
def take_pending_action(reminders: ReminderScheduler = Depends(get_reminders)):
    """Забрать отложенную навигацию (один раз, не старше 2 часов)"""
    record = reminders.take_pending_action()
    if record is None:
        return None
    return PendingActionResponse(
        action_id=record.action_id,
        action=record.action,
        subscription_id=record.subscription_id,
        created_at=record.created_at,
    )


@router.post("/deep-link", response_model=DeepLinkResponse)
def resolve_deep_link(
    req: DeepLinkRequest,
    store: SubscriptionStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    sub = resolve_subscription_link(store, req.url, settings.DEEP_LINK_SCHEME)
    if sub is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return DeepLinkResponse(subscription_id=sub.id, name=sub.name)
