from fastapi import Request

from app.services.change_feed import ChangeFeed
from app.services.preference_service import PreferenceStore
from app.services.subscription_service import SubscriptionManager


def get_subscription_manager(request: Request) -> SubscriptionManager:
    return request.app.state.subscriptions


def get_change_feed(request: Request) -> ChangeFeed:
    return request.app.state.change_feed


def get_preference_store(request: Request) -> PreferenceStore:
    return request.app.state.preferences
