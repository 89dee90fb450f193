"""
FastAPI dependencies (objects from the application container)
"""
from fastapi import Request

from subtracker.application.reminders import ReminderActionHandler, ReminderScheduler
from subtracker.application.subscriptions import SubscriptionStore
from subtracker.config import Settings
from subtracker.container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_store(request: Request) -> SubscriptionStore:
    """
    Usage в routes:
        @router.get("/")
        def list_subscriptions(store: SubscriptionStore = Depends(get_store)):
            ...
    """
    return get_container(request).store


def get_reminders(request: Request) -> ReminderScheduler:
    return get_container(request).reminders


def get_action_handler(request: Request) -> ReminderActionHandler:
    return get_container(request).action_handler


def get_app_settings(request: Request) -> Settings:
    return get_container(request).settings
