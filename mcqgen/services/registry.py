"""Process-wide key pool and scheduler, created lazily from the environment."""

from threading import Lock
from typing import Optional
import logging

from mcqgen.services.batch_scheduler import BatchScheduler, SchedulerPolicy
from mcqgen.services.generation_client import get_generation_client
from mcqgen.services.key_pool import KeyPool, PoolPolicy
from mcqgen.utils.env import keys_from_env

logger = logging.getLogger("registry")

_lock = Lock()
_pool: Optional[KeyPool] = None
_scheduler: Optional[BatchScheduler] = None


def get_key_pool() -> KeyPool:
    global _pool
    with _lock:
        if _pool is None:
            _pool = KeyPool(get_generation_client(), PoolPolicy.from_env())
        return _pool


def get_scheduler() -> BatchScheduler:
    global _scheduler
    pool = get_key_pool()
    with _lock:
        if _scheduler is None:
            _scheduler = BatchScheduler(pool, pool.client, SchedulerPolicy.from_env())
        return _scheduler


def seed_from_env() -> int:
    added = get_key_pool().seed(keys_from_env())
    if added:
        logger.info("Loaded %d server API key(s) from environment", added)
    return added


def reset() -> None:
    global _pool, _scheduler
    with _lock:
        _pool = None
        _scheduler = None
