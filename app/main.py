import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.routers import orders, realtime
from app.services.change_feed import change_feed
from app.services.preference_service import preference_store
from app.services.query_cache import query_cache
from app.services.subscription_service import Subscription, SubscriptionManager
from app.ws_manager import WebSocketNotificationSink, manager

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'))
        root.addHandler(handler)
    root.setLevel(settings.log_level.upper())


_push_tasks: set[asyncio.Task] = set()


def _push_refreshed_orders(subscription: Subscription, orders) -> None:
    task = asyncio.get_running_loop().create_task(
        manager.send_to_viewer(subscription.viewer_id, {'type': 'orders.refreshed', 'orders': orders})
    )
    _push_tasks.add(task)
    task.add_done_callback(_push_tasks.discard)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info('Order sync service starting')
    yield
    app.state.subscriptions.stop_all()
    query_cache.clear()
    logger.info('Order sync service stopped')


app = FastAPI(title='Order Sync Service', lifespan=lifespan)

app.state.change_feed = change_feed
app.state.preferences = preference_store
app.state.connections = manager
app.state.subscriptions = SubscriptionManager(
    feed=change_feed,
    sink=WebSocketNotificationSink(manager),
    preferences=preference_store,
    cache=query_cache,
    on_refresh=_push_refreshed_orders,
)

app.include_router(realtime.router)
app.include_router(orders.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok', 'subscriptions': len(app.state.subscriptions.active_viewers)}
