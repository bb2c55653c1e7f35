# edutest/workers/queue.py

import logging
from typing import Any, Callable, Iterable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue

from edutest.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_QUEUE_NAME = "default"
_CLEANUP_QUEUE_NAME = "cleanup"

_redis_conn: Redis | None = None


def get_redis_connection() -> Redis:
    global _redis_conn
    if _redis_conn is None:
        redis_url = settings.REDIS_URL
        _redis_conn = Redis.from_url(redis_url)
    return _redis_conn


def get_queue(name: str = _DEFAULT_QUEUE_NAME) -> Queue:
    return Queue(name, connection=get_redis_connection())


def enqueue_job(
    func: Callable[..., Any],
    *args: Any,
    queue_name: str = _DEFAULT_QUEUE_NAME,
    **kwargs: Any,
) -> str:

    q = get_queue(queue_name)
    job = q.enqueue(func, *args, **kwargs)
    return job.id


def enqueue_blob_cleanup(bucket: str, paths: list[str]) -> str:
    from edutest.workers.tasks import cleanup_blobs_task

    return enqueue_job(cleanup_blobs_task, bucket, paths, queue_name=_CLEANUP_QUEUE_NAME)


def schedule_blob_cleanup(bucket: str, paths: Iterable[str | None]) -> str | None:
    """
    Queue deletion of blobs that no record points at any more.

    When Redis is unreachable the cleanup runs inline instead, so deleted
    tests and failed submissions never leave files behind silently.
    """
    paths = [p for p in paths if p]
    if not paths:
        return None
    try:
        job_id = enqueue_blob_cleanup(bucket, paths)
    except RedisError as e:
        logger.warning(f"Could not enqueue cleanup of {len(paths)} blobs in {bucket}: {e}; running inline")
        from edutest.workers.tasks import cleanup_blobs_task

        cleanup_blobs_task(bucket, paths)
        return None
    logger.info(f"Enqueued cleanup job {job_id} for {len(paths)} blobs in {bucket}")
    return job_id
