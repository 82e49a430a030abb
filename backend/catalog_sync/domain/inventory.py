"""
Inventory Item Domain Model

The subset of a store inventory record (intake_items) the sync engine
reads and writes. Descriptive fields are owned by intake/sale flows;
the shopify_* and sync fields are owned by the sync engine.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncStatus(str, Enum):
    """Mirrors the terminal status of the item's most recent queue item"""
    UNSYNCED = "unsynced"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Fields an operator may overwrite through a manual merge
MERGEABLE_FIELDS = frozenset({
    "title", "price", "quantity", "sku",
    "brand_title", "subject", "card_number", "variant",
    "category_tag", "grade", "psa_cert", "condition", "year",
})


class InventoryItem(BaseModel):
    """
    Inventory record as seen by the sync engine

    Fields:
        id: Internal item ID (uuid)
        store_key: Which Shopify store this item belongs to
        location_id: Shopify location GID where stock is held
        sku: Stock Keeping Unit, becomes the variant SKU remotely
        item_type: "Graded" or "Raw" (drives title synthesis)
        shopify_*: Remote identifiers, None until the product exists
        sync_status: Current sync state, see SyncStatus
    """

    id: str = Field(..., description="Internal item ID")
    store_key: Optional[str] = Field(None, description="Store key for credential lookup")
    location_id: Optional[str] = Field(None, description="Shopify location GID")
    sku: Optional[str] = Field(None, description="Stock Keeping Unit")
    item_type: Optional[str] = Field(None, description="Graded / Raw")

    # Descriptive fields
    title: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    quantity: int = 0
    brand_title: Optional[str] = None
    subject: Optional[str] = None
    card_number: Optional[str] = None
    variant: Optional[str] = None
    category_tag: Optional[str] = None
    grade: Optional[str] = None
    psa_cert: Optional[str] = None
    condition: Optional[str] = None
    year: Optional[str] = None

    # Remote linkage (owned by the sync engine)
    shopify_product_id: Optional[str] = None
    shopify_variant_id: Optional[str] = None
    shopify_inventory_item_id: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    last_sync_error: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_graded(self) -> bool:
        return (self.item_type or "").lower() == "graded"

    @property
    def is_linked(self) -> bool:
        """Both product and variant exist remotely"""
        return bool(self.shopify_product_id and self.shopify_variant_id)

    def missing_sync_fields(self) -> List[str]:
        """Required fields that are empty; non-empty list means a permanent failure"""
        missing = []
        if not self.store_key:
            missing.append("store_key")
        if not self.location_id:
            missing.append("location_id")
        if not self.sku:
            missing.append("sku")
        return missing

    def synthesized_title(self) -> str:
        """
        Build a product title from descriptive fields

        Graded: "<brand> <subject> #<card number> <grade> <cert>"
        Raw:    "<brand> <subject> <card number>"
        Falls back to the SKU (or a short id) when the result is too short.
        """
        if self.is_graded:
            parts = [
                self.brand_title,
                self.subject,
                f"#{self.card_number}" if self.card_number else None,
                self.grade,
                self.psa_cert,
            ]
        else:
            parts = [self.brand_title, self.subject, self.card_number]

        title = " ".join(p.strip() for p in parts if p and p.strip())
        if len(title) < 3:
            title = self.sku or f"Product {self.id[:8]}"
        return title

    def product_title(self) -> str:
        """Title to push remotely: stored title if present, else synthesized"""
        if self.title and self.title.strip():
            return self.title.strip()
        return self.synthesized_title()
