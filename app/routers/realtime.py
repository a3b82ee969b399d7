from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, WebSocket, WebSocketDisconnect, status

from app.config import settings
from app.dependencies import get_change_feed, get_preference_store, get_subscription_manager
from app.schemas import AppStateChange, PreferencesIn, SubscriptionOut, SubscriptionStart
from app.services.change_feed import ChangeFeed, parse_webhook_payload
from app.services.notification_service import NotificationPreferences
from app.services.preference_service import PreferenceStore
from app.services.subscription_service import SubscriptionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/realtime', tags=['realtime'])


def _verify_webhook_secret(request: Request) -> None:
    if not settings.webhook_secret:
        return
    provided = request.headers.get('x-webhook-secret') or ''
    if not secrets.compare_digest(provided, settings.webhook_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.post('/webhook')
async def receive_change_event(
    request: Request,
    feed: ChangeFeed = Depends(get_change_feed),
):
    _verify_webhook_secret(request)
    try:
        payload = await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Body must be JSON') from exc
    try:
        event = parse_webhook_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    delivered = await feed.publish(event)
    return {'status': 'ok', 'delivered': delivered}


@router.post('/subscriptions', response_model=SubscriptionOut)
async def start_subscription(
    body: SubscriptionStart,
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
):
    subscription = subscriptions.start(body.viewer_id, body.role)
    return SubscriptionOut(viewer_id=subscription.viewer_id, role=subscription.role, channel=subscription.channel_name)


@router.delete('/subscriptions/{viewer_id}', status_code=status.HTTP_204_NO_CONTENT)
async def stop_subscription(
    viewer_id: str,
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
):
    subscriptions.stop_viewer(viewer_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post('/subscriptions/{viewer_id}/app-state')
async def change_app_state(
    viewer_id: str,
    body: AppStateChange,
    subscriptions: SubscriptionManager = Depends(get_subscription_manager),
):
    subscription = subscriptions.get(viewer_id)
    if subscription is None:
        raise HTTPException(status_code=404, detail='Subscription not found')
    resync = subscriptions.handle_app_state_change(subscription, body.state)
    return {'status': 'ok', 'app_state': subscription.app_state.value, 'resync': resync is not None}


@router.put('/subscriptions/{viewer_id}/preferences')
async def replace_preferences(
    viewer_id: str,
    body: PreferencesIn,
    preferences: PreferenceStore = Depends(get_preference_store),
):
    preferences.set(viewer_id, NotificationPreferences.from_dict(body.model_dump()))
    return {'status': 'ok'}


@router.websocket('/ws/{viewer_id}')
async def viewer_socket(websocket: WebSocket, viewer_id: str):
    connections = websocket.app.state.connections
    await connections.connect(viewer_id, websocket)
    try:
        while True:
            # Client messages are keepalives only.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        connections.disconnect(viewer_id, websocket)
