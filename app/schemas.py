from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, field_validator

from app.auth import Role
from app.models import OrderStatus
from app.services.quiet_hours_service import parse_clock_time
from app.services.subscription_service import AppState


class SubscriptionStart(BaseModel):
    viewer_id: str
    role: Role


class SubscriptionOut(BaseModel):
    viewer_id: str
    role: Role
    channel: str


class AppStateChange(BaseModel):
    state: AppState


class QuietHoursIn(BaseModel):
    enabled: bool = False
    start_time: str = '22:00'
    end_time: str = '07:00'

    @field_validator('start_time', 'end_time')
    @classmethod
    def _check_clock(cls, value: str) -> str:
        parse_clock_time(value)
        return value


class PreferencesIn(BaseModel):
    push_enabled: bool = True
    order_status_changed: bool = True
    new_order_created: bool = True
    daily_summary: bool = False
    sound_enabled: bool = True
    vibration_enabled: bool = True
    quiet_hours: QuietHoursIn = QuietHoursIn()


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    actor_id: str | None = None


class OrderStatusOut(BaseModel):
    id: str
    order_number: int
    status: OrderStatus
    fulfilled_at: datetime | None = None
    fulfilled_by: str | None = None
