"""
Attribution export projection.

Flattens per-entity attribution facts into fixed-column rows and writes them
to a one-sheet .xlsx workbook.

Usage:
    from scripts.lib.export import build_export_rows, write_workbook

    rows = build_export_rows(records)
    buffer = write_workbook(rows, sheet_name="people")
"""
from __future__ import annotations

import os
from datetime import datetime
from io import BytesIO
from typing import Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

import pandas as pd

from models.history_models import AttributionSummary, EntityIdentity, HistoryRecord, UTMTouch
from scripts.lib.attribution import analyze_entity, group_by_entity, has_utm, resolve_identity
from scripts.lib.errors import ExportDataError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

DISPLAY_TIMEZONE = ZoneInfo(os.getenv("DISPLAY_TIMEZONE", "Asia/Seoul"))

EXPORT_COLUMNS = [
    "Entity ID",
    "Name",
    "Email",
    "Deal Created",
    "UTM History",
    "Conversion Days",
    "First UTM",
    "Pre-deal UTM",
]
FALLBACK_COLUMNS = ["Entity ID", "Name", "Email", "Note"]
PARTIAL_DATA_NOTE = "No UTM history found; only partial data is available."

# Column widths for the xlsx sheet
COLUMN_WIDTHS = {
    "Entity ID": 38,
    "Name": 18,
    "Email": 28,
    "Deal Created": 18,
    "UTM History": 70,
    "Conversion Days": 16,
    "First UTM": 60,
    "Pre-deal UTM": 60,
    "Note": 50,
}


def format_timestamp(ts: Optional[datetime]) -> str:
    if ts is None:
        return ""
    return ts.astimezone(DISPLAY_TIMEZONE).strftime("%Y-%m-%d %H:%M")


def format_touch(touch: Optional[UTMTouch]) -> str:
    """One-line summary: ``YYYY-MM-DD HH:MM | source / medium / campaign / content``."""
    if touch is None:
        return ""
    parts = [touch.source, touch.medium, touch.campaign, touch.content]
    return f"{format_timestamp(touch.created_at)} | " + " / ".join(p or "-" for p in parts)


def format_touch_history(touches: Iterable[UTMTouch]) -> str:
    ordered = sorted(touches, key=lambda t: t.created_at, reverse=True)
    return "\n".join(format_touch(t) for t in ordered)


def project_row(identity: EntityIdentity, summary: AttributionSummary) -> Dict[str, object]:
    """Flatten one entity's attribution into an export row."""
    return {
        "Entity ID": identity.entity_id,
        "Name": identity.name or "",
        "Email": identity.email or "",
        "Deal Created": format_timestamp(summary.deal_created_at),
        "UTM History": format_touch_history(summary.utm_touches),
        "Conversion Days": "" if summary.conversion_days is None else summary.conversion_days,
        "First UTM": format_touch(summary.first_touch),
        "Pre-deal UTM": format_touch(summary.pre_deal_touch),
    }


def project_fallback_row(identity: EntityIdentity) -> Dict[str, object]:
    return {
        "Entity ID": identity.entity_id,
        "Name": identity.name or "",
        "Email": identity.email or "",
        "Note": PARTIAL_DATA_NOTE,
    }


def build_export_rows(records: Iterable[HistoryRecord]) -> List[Dict[str, object]]:
    """
    Build export rows for every entity with UTM history.

    Entities without UTM records are left out. When no entity has any,
    identity-only rows carrying a partial-data note are returned instead.

    Raises:
        ExportDataError: if there is nothing to export at all.
    """
    grouped = group_by_entity(records)
    tagged = {eid: recs for eid, recs in grouped.items() if has_utm(recs)}

    if tagged:
        rows = [
            project_row(resolve_identity(eid, recs), analyze_entity(recs))
            for eid, recs in tagged.items()
        ]
        logger.info("Projected %d attribution rows (%d entities without UTM skipped)",
                    len(rows), len(grouped) - len(tagged))
    else:
        rows = [project_fallback_row(resolve_identity(eid, recs)) for eid, recs in grouped.items()]
        if rows:
            logger.warning("No UTM history found; exporting %d identity-only rows", len(rows))

    if not rows:
        raise ExportDataError("No history records to export.")
    return rows


def write_workbook(rows: List[Dict[str, object]], sheet_name: str = "Attribution") -> BytesIO:
    """Write rows to a one-sheet xlsx workbook and return the rewound buffer."""
    if not rows:
        raise ExportDataError("No rows to write.")

    columns = EXPORT_COLUMNS if "UTM History" in rows[0] else FALLBACK_COLUMNS
    df = pd.DataFrame(rows, columns=columns)

    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name)

        workbook = writer.book
        worksheet = writer.sheets[sheet_name]
        wrap_format = workbook.add_format({"text_wrap": True, "valign": "top"})
        for idx, column in enumerate(columns):
            worksheet.set_column(idx, idx, COLUMN_WIDTHS.get(column, 20), wrap_format)

    output.seek(0)
    return output
