"""
Sync Queue Domain Model

One row per requested sync action for one inventory item.
Lifecycle: queued -> processing -> completed | queued (retry) | failed
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class QueueStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SyncQueueItem(BaseModel):
    """A unit of sync work"""

    id: str = Field(..., description="Queue item ID (uuid)")
    inventory_item_id: str = Field(..., description="Inventory item this work acts on")
    action: SyncAction
    status: QueueStatus = QueueStatus.QUEUED
    retry_count: int = Field(0, ge=0)
    max_retries: int = Field(3, ge=0)
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # Set as soon as the remote product is known to exist
    shopify_product_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)
