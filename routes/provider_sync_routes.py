"""
Provider Sync Routes
FastAPI routes for the cron trigger and the admin manual trigger of provider reconciliation
"""

import logging
import secrets
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header, HTTPException, Request

from config import Config
from jobs.provider_order_sync import get_provider_order_sync_job

logger = logging.getLogger(__name__)

router = APIRouter(tags=["provider-sync"])


def _require_cron_secret(authorization: Optional[str]):
    """Bearer CRON_SECRET check; open when no secret is configured"""
    if not Config.CRON_SECRET:
        return
    expected = f"Bearer {Config.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization, expected):
        logger.error("Provider sync trigger rejected: invalid or missing bearer token")
        raise HTTPException(status_code=401, detail="Unauthorized")


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="JSON object expected")
    return body


def _parse_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be an integer")


@router.get("/api/cron/sync-provider-orders")
async def cron_sync_provider_orders(authorization: Optional[str] = Header(None)):
    """Scheduled full pass over orders with a provider reference"""
    _require_cron_secret(authorization)
    try:
        result = await get_provider_order_sync_job().run_cron_sync()
        return {
            **result.to_dict(),
            "message": f"Synced {result.synced_count} of {result.total_processed} orders",
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in cron provider sync: {e}")
        raise HTTPException(status_code=500, detail="Failed to sync provider orders")


@router.post("/api/cron/sync-provider-orders")
async def cron_sync_single_order(request: Request, authorization: Optional[str] = Header(None)):
    """Sync one order: {"orderId": n}"""
    _require_cron_secret(authorization)
    body = await _json_body(request)
    if body.get("orderId") is None:
        raise HTTPException(status_code=400, detail="orderId is required")
    order_id = _parse_int(body.get("orderId"), "orderId")
    try:
        result = await get_provider_order_sync_job().sync_single_order(order_id)
        if result.total_checked == 0:
            raise HTTPException(status_code=404, detail="Order not found or not linked to a provider")
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error syncing order {order_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to sync order")


@router.post("/api/admin/provider-sync")
async def admin_provider_sync(request: Request, authorization: Optional[str] = Header(None)):
    """Manual trigger: {"orderIds": [...], "syncAll": bool, "providerId": n, "broadcast": bool}"""
    _require_cron_secret(authorization)
    body = await _json_body(request)

    raw_ids = body.get("orderIds") or []
    if not isinstance(raw_ids, list):
        raise HTTPException(status_code=400, detail="orderIds must be a list")
    order_ids: List[int] = [_parse_int(i, "orderIds") for i in raw_ids]
    sync_all = bool(body.get("syncAll", False))
    provider_id = _parse_int(body["providerId"], "providerId") if body.get("providerId") is not None else None

    if not sync_all and not order_ids:
        raise HTTPException(status_code=400, detail="Provide orderIds or set syncAll")

    try:
        result = await get_provider_order_sync_job().run_manual_sync(
            order_ids=order_ids,
            sync_all=sync_all,
            provider_id=provider_id,
            broadcast=bool(body.get("broadcast", True)),
        )
        return result.to_dict()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error in manual provider sync: {e}")
        raise HTTPException(status_code=500, detail="Failed to sync provider orders")


@router.post("/api/admin/refill-requests/sync-provider")
async def admin_sync_refill_requests(authorization: Optional[str] = Header(None)):
    """Follow refills already sent to providers"""
    _require_cron_secret(authorization)
    try:
        data = await get_provider_order_sync_job().run_refill_sync()
        return {
            "success": True,
            "data": data,
            "message": f"Synced {data['synced']} orders, {data['failed']} failed, {data['skipped']} skipped",
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error syncing refill requests: {e}")
        raise HTTPException(status_code=500, detail="Failed to sync provider status")
