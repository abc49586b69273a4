"""
Dramatiq broker.

Importing this module installs the Redis broker as the global default,
so it must be imported before any actor is declared (``jobs.tasks`` does
this).
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.middleware import CurrentMessage, Retries, default_middleware
from loguru import logger

from atlas.config.settings import settings

# Per-actor max_retries override this default. Cycle work is picked up
# again by the next scheduler tick, so backoff stays short.
RETRY_MIN_BACKOFF_MS = 1_000
RETRY_MAX_BACKOFF_MS = 30_000


def create_broker() -> RedisBroker:
    """Redis broker with the default middleware, CurrentMessage, and short retries."""
    middleware = [m() for m in default_middleware if m is not Retries]
    middleware += [
        CurrentMessage(),
        Retries(
            max_retries=2,
            min_backoff=RETRY_MIN_BACKOFF_MS,
            max_backoff=RETRY_MAX_BACKOFF_MS,
        ),
    ]
    return RedisBroker(url=settings.redis_url, middleware=middleware)


broker = create_broker()
dramatiq.set_broker(broker)

logger.info(
    f"Dramatiq broker on redis://{settings.redis_host}:{settings.redis_port}/"
    f"{settings.redis_db}"
)
