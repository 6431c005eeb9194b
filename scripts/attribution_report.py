"""
Salesmap Attribution Report
============================
Reads the latest raw Salesmap history snapshot from data/raw/, derives UTM
attribution for every entity and writes:

    data/processed/salesmap_<kind>_attribution.json
    data/processed/salesmap_<kind>_attribution.xlsx

Usage:
    python scripts/attribution_report.py                 # people
    python scripts/attribution_report.py --kind organization
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))

load_dotenv(BASE_DIR / ".env")

from models.history_models import EntityKind
from scripts.fetch_salesmap import RAW_DIR, raw_snapshot_prefix
from scripts.lib.attribution import analyze_entity, group_by_entity, has_utm, parse_records, resolve_identity
from scripts.lib.errors import DataError, ExportDataError
from scripts.lib.export import build_export_rows, write_workbook
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json, find_latest_file, load_json

logger = setup_logger("attribution_report")

PROCESSED_DIR = BASE_DIR / "data" / "processed"


def summarise_entities(raw_records: List[dict], kind: EntityKind) -> List[Dict[str, Any]]:
    """Identity plus attribution summary for every entity with UTM history."""
    entities = []
    for entity_id, records in group_by_entity(parse_records(raw_records, kind)).items():
        if not has_utm(records):
            continue
        entities.append({
            "identity": resolve_identity(entity_id, records).model_dump(mode="json"),
            "summary": analyze_entity(records).model_dump(mode="json"),
        })
    return entities


def run_attribution_report(kind: EntityKind = EntityKind.PEOPLE,
                           raw_dir: Path = RAW_DIR,
                           output_dir: Path = PROCESSED_DIR) -> Dict[str, Any]:
    """Load the latest snapshot for ``kind``, analyse it and save the outputs.

    Returns the processed report dictionary.
    """
    logger.info("Starting %s attribution report", kind.value)

    snapshot_path = find_latest_file(raw_dir, raw_snapshot_prefix(kind))
    if snapshot_path is None:
        raise DataError(
            f"No raw {kind.value} snapshot in {raw_dir}. Run: python scripts/fetch_salesmap.py",
            code="DATA_FETCH_FAILED",
        )
    raw_records = load_json(snapshot_path).get("results", [])
    logger.info("Loaded %d raw records from %s", len(raw_records), snapshot_path)

    entities = summarise_entities(raw_records, kind)
    report = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "data_source": "salesmap",
        "object_type": kind.value,
        "snapshot": snapshot_path.name,
        "record_count": len(raw_records),
        "entity_count": len(entities),
        "entities": entities,
    }

    output_dir.mkdir(parents=True, exist_ok=True)
    atomic_write_json(report, output_dir / f"salesmap_{kind.value}_attribution.json")

    try:
        rows = build_export_rows(parse_records(raw_records, kind))
    except ExportDataError as e:
        logger.warning("Skipping workbook: %s", e.message)
    else:
        xlsx_path = output_dir / f"salesmap_{kind.value}_attribution.xlsx"
        xlsx_path.write_bytes(write_workbook(rows, sheet_name=kind.value).getvalue())
        logger.info("Workbook saved to %s (%d rows)", xlsx_path, len(rows))

    logger.info("Attribution report complete: %d entities with UTM history", len(entities))
    return report


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Build the Salesmap attribution report")
    parser.add_argument("--kind", choices=[k.value for k in EntityKind],
                        default=EntityKind.PEOPLE.value)
    args = parser.parse_args(argv)

    try:
        run_attribution_report(EntityKind(args.kind))
    except DataError as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
