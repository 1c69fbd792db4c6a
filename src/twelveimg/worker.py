"""Long-running archive worker, for deployments without an external cron trigger."""
import asyncio
import logging

from twelveimg.core.logger import setup_logging
from twelveimg.services.job_queue import JobQueueWorker

logger = logging.getLogger(__name__)


def run() -> None:
    setup_logging()
    worker = JobQueueWorker()
    try:
        asyncio.run(worker.run_forever())
    except KeyboardInterrupt:
        logger.info(f"Worker {worker.worker_id} stopped")


if __name__ == "__main__":
    run()
