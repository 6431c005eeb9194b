"""
Attribution analysis over Salesmap change history.

Rebuilds UTM touches from the separately recorded utm_* field changes and
derives deal-conversion timing. Every function is pure: it takes records and
returns derived values, nothing is cached between calls.

Usage:
    from scripts.lib.attribution import parse_records, group_by_entity, analyze_entity

    records = parse_records(raw_records, EntityKind.PEOPLE)
    for entity_id, entity_records in group_by_entity(records).items():
        summary = analyze_entity(entity_records)
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.history_models import (
    AttributionSummary,
    EntityIdentity,
    EntityKind,
    HistoryRecord,
    UTMTouch,
)
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

UTM_SOURCE = "utm_source"
UTM_LANES = {
    "utm_source": "source",
    "utm_medium": "medium",
    "utm_campaign": "campaign",
    "utm_content": "content",
}
DEAL_COUNT_FIELD = "딜 개수"
NAME_FIELD = "이름"
EMAIL_FIELD = "이메일"

MinuteKey = Tuple[int, int, int, int, int]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_ts(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp string to a datetime."""
    if isinstance(value, datetime):
        ts = value
    elif not value or not isinstance(value, str):
        return None
    else:
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    # naive timestamps are taken as UTC; minute buckets are keyed in UTC
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _minute_key(ts: datetime) -> MinuteKey:
    return (ts.year, ts.month, ts.day, ts.hour, ts.minute)


def _safe_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def field_text(value: Any) -> Optional[str]:
    """Render a field value as text; structured values become JSON."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


# ---------------------------------------------------------------------------
# Record parsing and selection
# ---------------------------------------------------------------------------

def parse_record(raw: dict, kind: EntityKind) -> Optional[HistoryRecord]:
    """Build a HistoryRecord from a raw upstream dict, or None if unusable."""
    entity_id = raw.get(kind.id_key)
    created_at = _parse_ts(raw.get("createdAt"))
    if not entity_id or created_at is None:
        return None
    return HistoryRecord(
        id=str(raw.get("id", "")),
        entity_id=str(entity_id),
        type=field_text(raw.get("type")),
        field_name=field_text(raw.get("fieldName")),
        field_value=raw.get("fieldValue"),
        owner_id=field_text(raw.get("ownerId")),
        created_at=created_at,
    )


def parse_records(raw_records: Iterable[dict], kind: EntityKind) -> List[HistoryRecord]:
    """Parse raw records in received order, skipping malformed ones."""
    records = []
    skipped = 0
    for raw in raw_records:
        record = parse_record(raw, kind) if isinstance(raw, dict) else None
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.warning("Skipped %d malformed %s history records", skipped, kind.value)
    return records


def records_for_entity(records: Iterable[HistoryRecord], entity_id: str) -> List[HistoryRecord]:
    return [r for r in records if r.entity_id == entity_id]


def group_by_entity(records: Iterable[HistoryRecord]) -> Dict[str, List[HistoryRecord]]:
    """Group records by entity ID, keeping first-seen entity order."""
    grouped: Dict[str, List[HistoryRecord]] = {}
    for record in records:
        grouped.setdefault(record.entity_id, []).append(record)
    return grouped


def has_utm(records: Iterable[HistoryRecord]) -> bool:
    return any(r.field_name in UTM_LANES for r in records)


def resolve_identity(entity_id: str, records: Iterable[HistoryRecord]) -> EntityIdentity:
    """Latest name and email values by createdAt."""
    latest: Dict[str, HistoryRecord] = {}
    for record in records:
        if record.field_name not in (NAME_FIELD, EMAIL_FIELD):
            continue
        current = latest.get(record.field_name)
        if current is None or record.created_at > current.created_at:
            latest[record.field_name] = record

    name = latest.get(NAME_FIELD)
    email = latest.get(EMAIL_FIELD)
    return EntityIdentity(
        entity_id=entity_id,
        name=field_text(name.field_value) if name else None,
        email=field_text(email.field_value) if email else None,
    )


# ---------------------------------------------------------------------------
# UTM grouping
# ---------------------------------------------------------------------------

def _lanes(records: Iterable[HistoryRecord]) -> Dict[str, List[HistoryRecord]]:
    lanes: Dict[str, List[HistoryRecord]] = {name: [] for name in UTM_LANES}
    for record in records:
        if record.field_name in lanes:
            lanes[record.field_name].append(record)
    return lanes


def _build_groups(lanes: Dict[str, List[HistoryRecord]]) -> Dict[datetime, dict]:
    """
    Two passes: source records open groups (one per exact timestamp) and
    index them by minute; the other lanes then fill groups by minute lookup.
    """
    groups: Dict[datetime, dict] = {}
    by_minute: Dict[MinuteKey, dict] = {}

    for record in sorted(lanes[UTM_SOURCE], key=lambda r: r.created_at):
        group = groups.get(record.created_at)
        if group is None:
            group = {"created_at": record.created_at}
            groups[record.created_at] = group
            # earliest source group of a minute owns the bucket
            by_minute.setdefault(_minute_key(record.created_at), group)
        group["source"] = field_text(record.field_value)

    for field_name, attr in UTM_LANES.items():
        if field_name == UTM_SOURCE:
            continue
        for record in sorted(lanes[field_name], key=lambda r: r.created_at):
            group = by_minute.get(_minute_key(record.created_at))
            if group is not None:
                group[attr] = field_text(record.field_value)

    return groups


def group_utm_touches(records: Iterable[HistoryRecord]) -> List[UTMTouch]:
    """Rebuild UTM touches, newest first."""
    groups = _build_groups(_lanes(records))
    touches = [UTMTouch(**group) for group in groups.values()]
    touches.sort(key=lambda t: t.created_at, reverse=True)
    return touches


def first_touch(records: Iterable[HistoryRecord]) -> Optional[UTMTouch]:
    """The earliest utm_source record, expanded with its same-minute companions."""
    lanes = _lanes(records)
    if not lanes[UTM_SOURCE]:
        return None
    earliest = min(lanes[UTM_SOURCE], key=lambda r: r.created_at)
    groups = _build_groups(lanes)
    return UTMTouch(**groups[earliest.created_at])


# ---------------------------------------------------------------------------
# Deal timing
# ---------------------------------------------------------------------------

def find_deal_created_at(records: Iterable[HistoryRecord]) -> Optional[datetime]:
    """
    Scan deal-count records in received order (not re-sorted) and return the
    timestamp of the first one whose numeric value is above zero.
    """
    for record in records:
        if record.field_name != DEAL_COUNT_FIELD:
            continue
        value = _safe_number(record.field_value)
        if value is not None and value > 0:
            return record.created_at
    return None


def pre_deal_touch(records: Iterable[HistoryRecord],
                   deal_created_at: Optional[datetime]) -> Optional[UTMTouch]:
    """
    Latest value of each UTM lane strictly before deal creation.

    Lanes are chosen independently, so the combined touch may mix values
    from different sessions.
    """
    if deal_created_at is None:
        return None

    chosen: Dict[str, HistoryRecord] = {}
    for field_name, records_in_lane in _lanes(records).items():
        before = [r for r in records_in_lane if r.created_at < deal_created_at]
        if before:
            chosen[UTM_LANES[field_name]] = max(before, key=lambda r: r.created_at)

    if not chosen:
        return None
    return UTMTouch(
        created_at=max(r.created_at for r in chosen.values()),
        **{attr: field_text(r.field_value) for attr, r in chosen.items()},
    )


def conversion_days(first: Optional[datetime], deal_created_at: Optional[datetime]) -> Optional[int]:
    """Whole days from first touch to deal creation, floored; may be negative."""
    if first is None or deal_created_at is None:
        return None
    return (deal_created_at - first) // timedelta(days=1)


def analyze_entity(records: List[HistoryRecord]) -> AttributionSummary:
    """Derive every attribution fact for one entity's records."""
    touch = first_touch(records)
    deal_created_at = find_deal_created_at(records)
    return AttributionSummary(
        utm_touches=group_utm_touches(records),
        first_touch=touch,
        deal_created_at=deal_created_at,
        pre_deal_touch=pre_deal_touch(records, deal_created_at),
        conversion_days=conversion_days(touch.created_at if touch else None, deal_created_at),
    )
