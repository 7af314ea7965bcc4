"""
Recompute commentCount, favCount and voteScore from the child records.

Use after restoring a backup or importing data written by older clients whose
counter updates were not transactional.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from postboard.dependencies import get_db_client

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Reconcile denormalized post counters"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many posts have drifted",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    corrected = get_db_client().reconcile_counters(dry_run=args.dry_run)
    if args.dry_run:
        logger.info("%d posts have stale counters", corrected)
    else:
        logger.info("Corrected counters on %d posts", corrected)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
