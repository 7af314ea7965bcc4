"""
Rebuild the post search index from the document store.

Every post is re-pushed as an object tagged with its id; objects for posts
that no longer exist are dropped.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from postboard.dependencies import get_db_client, get_search_index
from postboard.search import to_search_object

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Rebuild the post search index")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many posts would be indexed without touching the index",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    posts = get_db_client().list_posts()
    if args.dry_run:
        logger.info("Would index %d posts", len(posts))
        return 0

    index = get_search_index()
    index.clear()
    count = index.save_objects(to_search_object(post.as_dict()) for post in posts)
    logger.info("Indexed %d posts", count)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
