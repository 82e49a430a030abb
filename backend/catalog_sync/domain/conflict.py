"""
Conflict detection and resolution models
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Resolution(str, Enum):
    """Operator-chosen conflict resolution strategy"""
    USE_LOCAL = "use_local"
    USE_SHOPIFY = "use_shopify"
    MANUAL_MERGE = "manual_merge"


class ConflictSuggestion(BaseModel):
    action: Resolution
    description: str
    impact: str


class ItemConflict(BaseModel):
    """Divergence between a local item and its linked remote product"""
    inventory_item_id: str
    sku: Optional[str] = None
    conflict_types: List[str] = []
    local: Dict[str, Any] = {}
    remote: Dict[str, Any] = {}
    suggestions: List[ConflictSuggestion] = []
    remote_missing: bool = False
    error: Optional[str] = None


class ResolutionResult(BaseModel):
    success: bool = True
    message: str
    inventory_item_id: str
    resolution: Resolution
    queue_item_id: Optional[str] = Field(None, description="Queue item enqueued by the resolution, if any")
