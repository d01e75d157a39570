from __future__ import annotations

from typing import Any, Callable, Dict

import redis
from rq import Queue
from rq.job import Job

from examprep.core.config import settings


def is_async_enabled() -> bool:
    return bool(settings.ASYNC_QUEUE_ENABLED)


def get_redis_conn():
    return redis.Redis.from_url(str(settings.REDIS_URL))


def get_queue(name: str = "default") -> Queue:
    return Queue(name, connection=get_redis_conn(), default_timeout=int(settings.RQ_DEFAULT_TIMEOUT_SEC))


def enqueue(fn: Callable[..., Any], *args: Any, queue_name: str = "default", **kwargs: Any) -> Dict[str, Any]:
    """Enqueue a background job.

    Returns a dict with job_id and status.
    If async is disabled, runs synchronously and returns a pseudo-job result.
    """
    if not is_async_enabled():
        out = fn(*args, **kwargs)
        return {"job_id": None, "queued": False, "sync_executed": True, "result": out}

    job = get_queue(queue_name).enqueue(fn, *args, **kwargs)
    return {"job_id": str(job.id), "queued": True, "sync_executed": False}


def fetch_job(job_id: str) -> Job:
    if not is_async_enabled():
        raise RuntimeError("async queue disabled")
    return Job.fetch(job_id, connection=get_redis_conn())
