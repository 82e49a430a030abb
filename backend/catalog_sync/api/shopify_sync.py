"""
Shopify Sync API - trigger surface for the sync engine
Designed to be called by a scheduler (cron) and by operator tools

Endpoints:
- POST /api/v1/shopify-sync/process          - Run one processor batch (requires API key)
- POST /api/v1/shopify-sync/resolve-conflict - Apply a conflict resolution (requires API key)
- POST /api/v1/shopify-sync/detect-conflicts - Compare a store with Shopify (requires API key)
- POST /api/v1/shopify-sync/queue            - Enqueue a sync action (requires API key)
- POST /api/v1/shopify-sync/retry-failed     - Requeue failed items (requires API key)
- POST /api/v1/shopify-sync/cleanup          - Purge/archive old queue rows (requires API key)
- GET  /api/v1/shopify-sync/status           - Queue statistics (public)

Security:
- POST endpoints require X-Sync-Key header with valid SYNC_API_KEY
"""
from fastapi import APIRouter, HTTPException, Query, Header, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime
import logging

from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import (
    ConflictResolutionError,
    NotFoundError,
    RateLimitError,
    RemoteCatalogError,
)
from catalog_sync.domain.conflict import ItemConflict, Resolution
from catalog_sync.domain.sync_queue import SyncAction
from catalog_sync.repositories import SyncQueueRepository
from catalog_sync.services import ConflictResolver, QueueMaintenanceService, SyncProcessor
from catalog_sync.services.sync_processor import LOCK_HELD_MESSAGE

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/shopify-sync", tags=["Shopify Sync"])

# Initialize services
sync_processor = SyncProcessor()
conflict_resolver = ConflictResolver()
queue_maintenance = QueueMaintenanceService()
queue_repository = SyncQueueRepository()


# ============================================================================
# Security - API Key Verification
# ============================================================================

async def verify_sync_key(x_sync_key: str = Header(None, alias="X-Sync-Key")):
    """
    Verify the sync API key from X-Sync-Key header.

    If SYNC_API_KEY is not configured, allows all requests.
    If configured, requires matching key.
    """
    if not settings.SYNC_API_KEY:
        logger.warning("SYNC_API_KEY not configured - shopify sync endpoints are unprotected!")
        return

    if not x_sync_key:
        logger.warning("Shopify sync request without X-Sync-Key header")
        raise HTTPException(
            status_code=401,
            detail="Missing X-Sync-Key header. Authentication required."
        )

    if x_sync_key != settings.SYNC_API_KEY:
        logger.warning("Invalid sync key attempt")
        raise HTTPException(
            status_code=401,
            detail="Invalid API key"
        )


# ============================================================================
# Request / Response Models
# ============================================================================

class CamelModel(BaseModel):
    """JSON bodies use camelCase keys"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessResponse(BaseModel):
    success: bool
    processed: int
    message: str


class ResolveConflictRequest(CamelModel):
    inventory_item_id: str
    resolution: str
    merge_data: Optional[Dict[str, Any]] = None


class ResolveConflictResponse(CamelModel):
    success: bool
    message: str
    resolution: Resolution
    inventory_item_id: str
    queue_item_id: Optional[str] = None


class DetectConflictsRequest(CamelModel):
    store_key: str
    item_ids: Optional[List[str]] = None


class DetectConflictsResponse(CamelModel):
    store_key: str
    conflicts: List[ItemConflict]


class EnqueueRequest(CamelModel):
    inventory_item_id: str
    action: SyncAction = SyncAction.UPDATE


class QueueItemResponse(CamelModel):
    id: str
    inventory_item_id: str
    action: SyncAction
    status: str
    retry_count: int
    max_retries: int
    created_at: Optional[datetime] = None


class RetryFailedRequest(CamelModel):
    queue_item_ids: Optional[List[str]] = None


class RetryFailedResponse(CamelModel):
    success: bool
    requeued: int
    queue_item_ids: List[str]


class CleanupResponse(CamelModel):
    success: bool
    deleted_completed: int
    archived_failed: int


def _error_response(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    content = {"success": False, "error": message}
    if code:
        content["code"] = code
    return JSONResponse(status_code=status_code, content=content)


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/process", response_model=ProcessResponse, dependencies=[Depends(verify_sync_key)])
async def process_queue(
    max_items: Optional[int] = Query(default=None, ge=1, le=500, description="Maximum queue items to attempt")
):
    """
    Run one sync processor batch

    Items are processed oldest first with a fixed pause between them.
    Returns 409 if another processor instance is running.
    """
    try:
        result = await sync_processor.run_batch(max_items)
    except Exception as e:
        logger.error(f"Error processing sync queue: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    if not result.success and result.message == LOCK_HELD_MESSAGE:
        return JSONResponse(
            status_code=409,
            content={"success": False, "processed": 0, "message": result.message}
        )

    return ProcessResponse(success=result.success, processed=result.processed, message=result.message)


@router.post("/resolve-conflict", response_model=ResolveConflictResponse, response_model_by_alias=True,
             dependencies=[Depends(verify_sync_key)])
async def resolve_conflict(request: ResolveConflictRequest):
    """
    Resolve divergence between a local item and its Shopify product

    resolution:
    - use_local: queue a push of local values
    - use_shopify: adopt Shopify title/price/quantity now
    - manual_merge: save mergeData locally, then queue a push
    """
    try:
        result = await conflict_resolver.resolve(
            request.inventory_item_id,
            request.resolution,
            request.merge_data
        )
    except ConflictResolutionError as e:
        logger.warning(f"Conflict resolution rejected for {request.inventory_item_id}: {e}")
        return _error_response(400, str(e), e.code)
    except NotFoundError as e:
        return _error_response(404, str(e), "not_found")
    except RateLimitError as e:
        return _error_response(429, str(e), "rate_limited")
    except RemoteCatalogError as e:
        logger.error(f"Shopify error resolving conflict for {request.inventory_item_id}: {e}")
        return _error_response(502, str(e), "remote_error")
    except Exception as e:
        logger.error(f"Error resolving conflict: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return ResolveConflictResponse(
        success=result.success,
        message=result.message,
        resolution=result.resolution,
        inventory_item_id=result.inventory_item_id,
        queue_item_id=result.queue_item_id
    )


@router.post("/detect-conflicts", response_model=DetectConflictsResponse, response_model_by_alias=True,
             dependencies=[Depends(verify_sync_key)])
async def detect_conflicts(request: DetectConflictsRequest):
    """Compare linked items of a store with Shopify (read-only)"""
    try:
        conflicts = await conflict_resolver.detect_conflicts(request.store_key, request.item_ids)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Error detecting conflicts for {request.store_key}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return DetectConflictsResponse(store_key=request.store_key, conflicts=conflicts)


@router.post("/queue", response_model=QueueItemResponse, response_model_by_alias=True,
             dependencies=[Depends(verify_sync_key)])
async def enqueue_item(request: EnqueueRequest):
    """Queue a create/update/delete for an inventory item"""
    try:
        queue_item = queue_repository.enqueue(
            request.inventory_item_id,
            request.action,
            settings.SYNC_DEFAULT_MAX_RETRIES
        )
    except Exception as e:
        logger.error(f"Error enqueueing item {request.inventory_item_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return QueueItemResponse(
        id=queue_item.id,
        inventory_item_id=queue_item.inventory_item_id,
        action=queue_item.action,
        status=queue_item.status.value,
        retry_count=queue_item.retry_count,
        max_retries=queue_item.max_retries,
        created_at=queue_item.created_at
    )


@router.post("/retry-failed", response_model=RetryFailedResponse, response_model_by_alias=True,
             dependencies=[Depends(verify_sync_key)])
async def retry_failed(request: Optional[RetryFailedRequest] = None):
    """Requeue failed items (all, or the given ids) with a fresh retry budget"""
    try:
        items = queue_maintenance.retry_failed(request.queue_item_ids if request else None)
    except Exception as e:
        logger.error(f"Error retrying failed items: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return RetryFailedResponse(
        success=True,
        requeued=len(items),
        queue_item_ids=[item.id for item in items]
    )


@router.post("/cleanup", response_model=CleanupResponse, response_model_by_alias=True,
             dependencies=[Depends(verify_sync_key)])
async def cleanup_queue():
    """Delete old completed items and archive old failed items"""
    try:
        result = queue_maintenance.cleanup()
    except Exception as e:
        logger.error(f"Error cleaning up sync queue: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return CleanupResponse(
        success=True,
        deleted_completed=result.deleted_completed,
        archived_failed=result.archived_failed
    )


@router.get("/status")
async def get_queue_status():
    """Queue counts per status, oldest queued item and failure rate"""
    try:
        return queue_maintenance.get_queue_stats().to_dict()
    except Exception as e:
        logger.error(f"Error getting sync queue status: {e}")
        raise HTTPException(status_code=500, detail=str(e))
