"""
Dramatiq Redis Broker Configuration
Handles the background queue for the watch renewal sweep
"""
import logging
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import (
    AgeLimit, Callbacks, Pipelines,
    Retries, ShutdownNotifications
)

from mirrorsync.core.config import settings

logger = logging.getLogger(__name__)

MIDDLEWARE = [
    AgeLimit(),
    Retries(max_retries=3),
    Callbacks(),
    Pipelines(),
    ShutdownNotifications(),
    # TimeLimit intentionally excluded - Python 3.13 incompatibility
]

if not settings.redis_url:
    logger.warning("⚠️  REDIS_URL not set - background jobs run in-process only (stub broker)")
    broker = StubBroker(middleware=MIDDLEWARE)
else:
    broker = RedisBroker(url=settings.redis_url, middleware=MIDDLEWARE)
    logger.info(f"✅ Redis broker initialized: {settings.redis_url[:20]}...")

dramatiq.set_broker(broker)
