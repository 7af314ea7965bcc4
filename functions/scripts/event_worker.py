"""
Daemon that applies queued change events (notifications, search sync).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from postboard.worker import drain, run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Postboard event worker")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        help="Seconds to block on the queue between polls",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    if args.once:
        processed = drain()
        logger.info("Processed %d events", processed)
        return 0

    logger.info("Starting event worker loop")
    run_loop(poll_interval_seconds=args.poll_interval)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
