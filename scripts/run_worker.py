"""
Run the batch worker pool from CLI.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
from dataclasses import replace

from app.config import get_worker_settings
from app.services.batch_worker import BatchWorkerPool


def main() -> int:
    parser = argparse.ArgumentParser(description="Process queued job import batches.")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Maximum batches processed at once (defaults to MAX_CONCURRENCY).",
    )
    parser.add_argument(
        "--worker-id",
        dest="worker_id",
        default=None,
        help="Identifier recorded on claimed batches (defaults to host:pid).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process every due batch sequentially, then exit.",
    )
    args = parser.parse_args()

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    settings = get_worker_settings()
    if args.concurrency is not None:
        settings = replace(settings, max_concurrency=max(1, args.concurrency))

    pool = BatchWorkerPool(settings=settings, worker_id=args.worker_id)
    if args.once:
        pool.recover_stale()
        handled = pool.run_until_idle()
        logging.getLogger(__name__).info("Processed %s batch(es)", handled)
        return 0

    def _stop(signum: int, _frame: object) -> None:
        logging.getLogger(__name__).info("Received signal %s; stopping worker pool", signum)
        pool.request_stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    pool.run_forever()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
