"""
Salesmap CRM History Fetcher
============================

Drains the Salesmap v2 people and organization history endpoints via API
token and writes one raw JSON snapshot per entity kind to data/raw/.
Pagination follows the opaque cursor; calls are throttled to 100 req/12s.

Usage:
    python scripts/fetch_salesmap.py                    # both kinds
    python scripts/fetch_salesmap.py --kind people      # one kind
"""

import argparse
import asyncio
import os
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

from integrations.salesmap import RateLimiter, SalesmapIntegration
from models.history_models import EntityKind
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json

logger = setup_logger("fetch_salesmap")

RAW_DIR = BASE_DIR / "data" / "raw"


def raw_snapshot_prefix(kind: EntityKind) -> str:
    return f"salesmap_{kind.value}_history"


def _write_raw(kind: EntityKind, date_stamp: str, records: List[Any]) -> Path:
    payload = {
        "source": "salesmap",
        "object_type": kind.value,
        "captured_at": date_stamp,
        "record_count": len(records),
        "results": records,
    }
    out_path = RAW_DIR / f"{raw_snapshot_prefix(kind)}_{date_stamp}.json"
    if atomic_write_json(payload, out_path):
        logger.info("Saved %s history: %d records -> %s", kind.value, len(records), out_path)
    return out_path


async def fetch_salesmap(kinds: Optional[List[EntityKind]] = None) -> bool:
    """Main entry: fetch history for each kind and write raw JSON files."""
    token = os.getenv("SALESMAP_API_TOKEN")
    if not token:
        logger.warning("Missing SALESMAP_API_TOKEN environment variable")
        return False

    logger.info("Starting Salesmap history extraction")
    client = SalesmapIntegration()
    # Kinds are drained one after another, so one limiter covers the whole run.
    limiter = RateLimiter()
    date_stamp = time.strftime("%Y-%m-%d")

    for kind in kinds or list(EntityKind):
        records = await client.collect_all(kind, token, limiter=limiter)
        _write_raw(kind, date_stamp, records)

    logger.info("Salesmap extraction complete")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Fetch Salesmap change history")
    parser.add_argument("--kind", choices=[k.value for k in EntityKind],
                        help="Fetch a single entity kind")
    args = parser.parse_args(argv)

    kinds = [EntityKind(args.kind)] if args.kind else None
    return 0 if asyncio.run(fetch_salesmap(kinds)) else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        logger.error("Salesmap extraction failed: %s", e, exc_info=True)
        sys.exit(1)
