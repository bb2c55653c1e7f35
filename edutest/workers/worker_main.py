# edutest/workers/worker_main.py

from rq import Queue, SimpleWorker

from edutest.core.logging_config import configure_logging
from edutest.workers.queue import get_redis_connection


QUEUE_NAMES = ["cleanup", "default"]


def main():
    logger = configure_logging()
    redis_conn = get_redis_connection()

    queues = [Queue(name, connection=redis_conn) for name in QUEUE_NAMES]
    logger.info(f"Worker listening on {', '.join(QUEUE_NAMES)}")

    worker = SimpleWorker(queues, connection=redis_conn)
    worker.work()


if __name__ == "__main__":
    main()
