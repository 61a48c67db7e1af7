"""
Run a feed import from CLI and wait for its setup to finish.
"""

from __future__ import annotations

import argparse
import json
import logging
import os

from app.services.import_orchestrator_service import (
    ImportOrchestratorService,
    ThreadPoolTaskExecutor,
)


def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger job feed imports.")
    parser.add_argument(
        "--source",
        dest="source",
        default=None,
        help="Optional feed URL; all configured feeds are imported when omitted.",
    )
    args = parser.parse_args()

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    executor = ThreadPoolTaskExecutor()
    service = ImportOrchestratorService(executor=executor)
    try:
        if args.source:
            results = [service.trigger_for_source(args.source)]
        else:
            results = service.trigger_all().results
    finally:
        executor.shutdown(wait=True)

    payload = [
        {
            "source_url": result.source_url,
            "started": result.started,
            "message": result.message,
            "run_id": str(result.run_id) if result.run_id else None,
        }
        for result in results
    ]
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
