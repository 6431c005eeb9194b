"""
Salesmap Attribution Hub — History Router
===========================================
Live Salesmap history endpoints. Every request drains the upstream cursor
chain from the given cursor, then serves raw or derived data from it.

Endpoints:
  GET /api/v2/{kind}/history                   - All history records, flattened
  GET /api/v2/{kind}/entities                  - Entities found in the history
  GET /api/v2/{kind}/attribution/{entity_id}   - Attribution detail for one entity
  GET /api/v2/{kind}/export                    - Attribution export (.xlsx)
"""
from __future__ import annotations

import asyncio
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from dashboard.api.middleware import get_token
from integrations.salesmap import SalesmapIntegration
from models.history_models import EntityAttribution, EntityKind, EntityListItem
from scripts.lib.attribution import (
    analyze_entity,
    group_by_entity,
    has_utm,
    parse_records,
    records_for_entity,
    resolve_identity,
)
from scripts.lib.errors import APITimeoutError
from scripts.lib.export import build_export_rows, write_workbook
from scripts.lib.logger import setup_logger

logger = setup_logger("history_router")

router = APIRouter(prefix="/api/v2", tags=["salesmap"])

COLLECT_TIMEOUT = float(os.getenv("SALESMAP_COLLECT_TIMEOUT", "300"))

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_salesmap(request: Request) -> SalesmapIntegration:
    return request.app.state.salesmap


async def collect_history(
    salesmap: SalesmapIntegration,
    kind: EntityKind,
    token: str,
    cursor: Optional[str],
) -> List[dict]:
    """Drain every page for ``kind`` within the collection time budget."""
    try:
        return await asyncio.wait_for(
            salesmap.collect_all(kind, token, start_cursor=cursor),
            timeout=COLLECT_TIMEOUT,
        )
    except asyncio.TimeoutError:
        logger.error("Collecting %s history exceeded %ss", kind.value, COLLECT_TIMEOUT)
        raise APITimeoutError(salesmap.history_url(kind), COLLECT_TIMEOUT)


@router.get("/{kind}/history")
async def list_history(
    kind: EntityKind,
    cursor: Optional[str] = Query(None, description="Cursor to start from"),
    token: str = Depends(get_token),
    salesmap: SalesmapIntegration = Depends(get_salesmap),
):
    """Every history record from ``cursor`` onward, as returned by Salesmap."""
    records = await collect_history(salesmap, kind, token, cursor)
    return {
        "success": True,
        "data": {
            kind.list_key: records,
            "nextCursor": None,
        },
    }


@router.get("/{kind}/entities")
async def list_entities(
    kind: EntityKind,
    cursor: Optional[str] = Query(None, description="Cursor to start from"),
    token: str = Depends(get_token),
    salesmap: SalesmapIntegration = Depends(get_salesmap),
):
    """Entities present in the history, with identity and UTM flag."""
    records = parse_records(await collect_history(salesmap, kind, token, cursor), kind)
    entities = []
    for entity_id, entity_records in group_by_entity(records).items():
        identity = resolve_identity(entity_id, entity_records)
        entities.append(EntityListItem(
            entity_id=entity_id,
            name=identity.name,
            email=identity.email,
            record_count=len(entity_records),
            has_utm=has_utm(entity_records),
        ))
    return {
        "success": True,
        "data": {
            "entities": [e.model_dump() for e in entities],
            "count": len(entities),
        },
    }


@router.get("/{kind}/attribution/{entity_id}")
async def get_attribution(
    kind: EntityKind,
    entity_id: str,
    cursor: Optional[str] = Query(None, description="Cursor to start from"),
    token: str = Depends(get_token),
    salesmap: SalesmapIntegration = Depends(get_salesmap),
):
    """Attribution summary, identity and raw history for one entity."""
    raw_records = await collect_history(salesmap, kind, token, cursor)
    entity_records = records_for_entity(parse_records(raw_records, kind), entity_id)
    if not entity_records:
        return JSONResponse(
            status_code=404,
            content={"success": False, "message": f"No history for {kind.value} {entity_id}."},
        )

    detail = EntityAttribution(
        identity=resolve_identity(entity_id, entity_records),
        summary=analyze_entity(entity_records),
        history=[r for r in raw_records if isinstance(r, dict) and str(r.get(kind.id_key)) == entity_id],
    )
    return {"success": True, "data": detail.model_dump(mode="json")}


@router.get("/{kind}/export")
async def export_attribution(
    kind: EntityKind,
    cursor: Optional[str] = Query(None, description="Cursor to start from"),
    token: str = Depends(get_token),
    salesmap: SalesmapIntegration = Depends(get_salesmap),
):
    """Export attribution rows for every UTM-tagged entity as an Excel file."""
    records = parse_records(await collect_history(salesmap, kind, token, cursor), kind)
    rows = build_export_rows(records)
    output = write_workbook(rows, sheet_name=kind.value)

    filename = f"salesmap_{kind.value}_attribution_{datetime.now(timezone.utc).strftime('%Y%m%d')}.xlsx"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(output, media_type=XLSX_MEDIA_TYPE, headers=headers)
