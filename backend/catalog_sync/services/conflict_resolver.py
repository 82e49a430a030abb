"""
Conflict Resolver - reconcile local inventory with linked Shopify products

Three operator strategies:
- use_local:    enqueue an update; the processor pushes local state later
- use_shopify:  pull remote title/price/quantity into the local record now
- manual_merge: write operator fields locally, then enqueue an update

The resolver never writes to Shopify itself. Remote writes only happen
through the processor's rate-limit aware loop.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from catalog_sync.connectors.shopify_connector import ShopifyConnector
from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import (
    ConflictResolutionError,
    NotFoundError,
    RateLimitError,
    RemoteCatalogError,
)
from catalog_sync.domain.conflict import (
    ConflictSuggestion,
    ItemConflict,
    Resolution,
    ResolutionResult,
)
from catalog_sync.domain.inventory import MERGEABLE_FIELDS, InventoryItem
from catalog_sync.domain.remote import RemoteProduct, StoreCredentials
from catalog_sync.domain.sync_queue import SyncAction
from catalog_sync.repositories import (
    AuditLogRepository,
    InventoryRepository,
    StoreCredentialsRepository,
    SyncQueueRepository,
)

logger = logging.getLogger(__name__)

PRICE_TOLERANCE = Decimal("0.01")
# Above these thresholds both strategies are suggested
PRICE_DIFF_SIGNIFICANT_RATIO = Decimal("0.10")
QUANTITY_DIFF_SIGNIFICANT = 5


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def compare_item(item: InventoryItem, product: RemoteProduct) -> ItemConflict:
    """
    Compare a linked item with its remote product (pure, no I/O)

    Remote values are taken from the linked variant. A product without
    that variant is reported as remote_missing.
    """
    variant = product.find_variant(item.shopify_variant_id) if item.shopify_variant_id else None
    local_title = item.product_title()
    local = {
        'title': local_title,
        'price': item.price,
        'quantity': item.quantity,
    }

    if variant is None:
        return ItemConflict(
            inventory_item_id=item.id,
            sku=item.sku,
            local=local,
            remote={'title': product.title},
            remote_missing=True,
            error=f"Variant {item.shopify_variant_id} not found on product {product.id}"
        )

    remote = {
        'title': product.title,
        'price': variant.price,
        'quantity': variant.inventory_quantity,
    }

    conflict_types = []
    suggestions = []

    local_price = item.price if item.price is not None else Decimal("0")
    price_diff = abs(local_price - variant.price)
    if price_diff > PRICE_TOLERANCE:
        conflict_types.append('price')
        if local_price > 0 and price_diff > local_price * PRICE_DIFF_SIGNIFICANT_RATIO:
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_LOCAL,
                description=f"Push local price {local_price} to Shopify",
                impact="Shopify price changes on the next sync batch"
            ))
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_SHOPIFY,
                description=f"Adopt Shopify price {variant.price}",
                impact="Local price is overwritten immediately"
            ))
        else:
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_LOCAL,
                description="Minor price difference - use local",
                impact="Shopify price changes on the next sync batch"
            ))

    if item.quantity != variant.inventory_quantity:
        conflict_types.append('quantity')
        if abs(item.quantity - variant.inventory_quantity) > QUANTITY_DIFF_SIGNIFICANT:
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_LOCAL,
                description=f"Push local quantity {item.quantity} to Shopify",
                impact="Shopify stock is overwritten on the next sync batch"
            ))
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_SHOPIFY,
                description=f"Adopt Shopify quantity {variant.inventory_quantity}",
                impact="Local stock is overwritten immediately"
            ))
        else:
            suggestions.append(ConflictSuggestion(
                action=Resolution.USE_LOCAL,
                description="Small quantity difference - use local",
                impact="Shopify stock is overwritten on the next sync batch"
            ))

    if local_title and product.title and local_title != product.title:
        conflict_types.append('title')

    if conflict_types and not suggestions:
        suggestions.append(ConflictSuggestion(
            action=Resolution.USE_LOCAL,
            description="Use local system values",
            impact="Shopify product is updated on the next sync batch"
        ))

    return ItemConflict(
        inventory_item_id=item.id,
        sku=item.sku,
        conflict_types=conflict_types,
        local=local,
        remote=remote,
        suggestions=suggestions
    )


class ConflictResolver:
    """Applies operator resolutions and scans stores for divergence"""

    def __init__(
        self,
        queue_repository: Optional[SyncQueueRepository] = None,
        inventory_repository: Optional[InventoryRepository] = None,
        credentials_repository: Optional[StoreCredentialsRepository] = None,
        audit_repository: Optional[AuditLogRepository] = None,
        connector_factory: Optional[Callable[[StoreCredentials], ShopifyConnector]] = None,
        max_retries: Optional[int] = None,
        detection_limit: Optional[int] = None,
    ):
        self.queue = queue_repository or SyncQueueRepository()
        self.inventory = inventory_repository or InventoryRepository()
        self.credentials = credentials_repository or StoreCredentialsRepository()
        self.audit = audit_repository or AuditLogRepository()
        self.connector_factory = connector_factory or ShopifyConnector.from_credentials
        self.max_retries = max_retries or settings.SYNC_DEFAULT_MAX_RETRIES
        self.detection_limit = detection_limit or settings.CONFLICT_DETECTION_LIMIT

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve(self, inventory_item_id: str, resolution: str,
                      merge_data: Optional[Dict[str, Any]] = None) -> ResolutionResult:
        """
        Apply one resolution strategy to an inventory item

        Raises:
            NotFoundError: inventory item does not exist
            ConflictResolutionError: the strategy's preconditions do not hold
            RemoteCatalogError: the read-only Shopify query failed (use_shopify)
        """
        try:
            strategy = Resolution(resolution)
        except ValueError:
            raise ConflictResolutionError(f"Invalid resolution: {resolution}", code="invalid_resolution")

        if strategy == Resolution.MANUAL_MERGE and not merge_data:
            raise ConflictResolutionError(
                "Merge data required for manual_merge resolution", code="missing_merge_data"
            )

        item = self.inventory.find_by_id(inventory_item_id)
        if item is None:
            raise NotFoundError(f"Inventory item not found: {inventory_item_id}")

        if strategy == Resolution.USE_LOCAL:
            result = self._use_local(item)
        elif strategy == Resolution.USE_SHOPIFY:
            result = await self._use_shopify(item)
        else:
            result = self._manual_merge(item, merge_data)

        self._audit(result, merge_data)
        logger.info(f"Resolved conflict for item {item.id} with {strategy.value}")
        return result

    def _use_local(self, item: InventoryItem) -> ResolutionResult:
        queue_item = self.queue.enqueue(item.id, SyncAction.UPDATE, self.max_retries)
        return ResolutionResult(
            message="Local values queued for push to Shopify",
            inventory_item_id=item.id,
            resolution=Resolution.USE_LOCAL,
            queue_item_id=queue_item.id
        )

    async def _use_shopify(self, item: InventoryItem) -> ResolutionResult:
        if not item.is_linked:
            raise ConflictResolutionError(
                "Item has no Shopify product/variant to pull from", code="missing_remote_link"
            )

        connector = self.connector_factory(self.credentials.get_credentials(item.store_key))
        product = await connector.get_product(item.shopify_product_id)
        if product is None:
            raise ConflictResolutionError(
                f"Shopify product {item.shopify_product_id} not found", code="remote_product_not_found"
            )

        variant = product.find_variant(item.shopify_variant_id)
        if variant is None:
            raise ConflictResolutionError(
                f"Shopify variant {item.shopify_variant_id} not found", code="remote_variant_not_found"
            )

        self.inventory.apply_remote_state(
            item.id,
            title=product.title,
            price=variant.price,
            quantity=variant.inventory_quantity
        )
        return ResolutionResult(
            message="Local values updated from Shopify",
            inventory_item_id=item.id,
            resolution=Resolution.USE_SHOPIFY
        )

    def _manual_merge(self, item: InventoryItem, merge_data: Dict[str, Any]) -> ResolutionResult:
        fields = self._validate_merge_data(item, merge_data)
        queue_item = self.queue.enqueue(item.id, SyncAction.UPDATE, self.max_retries, merge_fields=fields)
        return ResolutionResult(
            message="Merged values saved and queued for push to Shopify",
            inventory_item_id=item.id,
            resolution=Resolution.MANUAL_MERGE,
            queue_item_id=queue_item.id
        )

    @staticmethod
    def _validate_merge_data(item: InventoryItem, merge_data: Dict[str, Any]) -> Dict[str, Any]:
        """Reject unknown fields and invalid values before anything is written"""
        unknown = set(merge_data) - MERGEABLE_FIELDS
        if unknown:
            raise ConflictResolutionError(
                f"Fields cannot be merged: {', '.join(sorted(unknown))}", code="invalid_merge_fields"
            )

        try:
            merged = InventoryItem.model_validate({**item.model_dump(), **merge_data})
        except PydanticValidationError as e:
            raise ConflictResolutionError(f"Invalid merge data: {e}", code="invalid_merge_fields")

        return {field: getattr(merged, field) for field in merge_data}

    def _audit(self, result: ResolutionResult, merge_data: Optional[Dict[str, Any]]) -> None:
        try:
            self.audit.append("INFO", "Shopify sync conflict resolved", {
                'inventoryItemId': result.inventory_item_id,
                'resolution': result.resolution.value,
                'mergeData': merge_data,
                'queueItemId': result.queue_item_id,
            }, source="shopify_conflict_resolver")
        except Exception as e:
            logger.error(f"Failed to write audit log for item {result.inventory_item_id}: {e}")

    # =========================================================================
    # Detection
    # =========================================================================

    async def detect_conflicts(self, store_key: str,
                               item_ids: Optional[List[str]] = None) -> List[ItemConflict]:
        """
        Compare linked items of a store with Shopify (read-only)

        Only items with at least one conflict (or a lookup problem) are
        returned. A rate limit stops the scan; other errors are recorded
        on the item and the scan continues.
        """
        items = self.inventory.find_linked_by_store(store_key, item_ids, limit=self.detection_limit)
        if not items:
            return []

        connector = self.connector_factory(self.credentials.get_credentials(store_key))
        conflicts = []

        for item in items:
            try:
                product = await connector.get_product(item.shopify_product_id)
            except RateLimitError as e:
                logger.warning(f"Rate limited during conflict detection at item {item.id}, stopping scan")
                conflicts.append(ItemConflict(inventory_item_id=item.id, sku=item.sku, error=str(e)))
                break
            except RemoteCatalogError as e:
                logger.warning(f"Could not fetch Shopify product for item {item.id}: {e}")
                conflicts.append(ItemConflict(inventory_item_id=item.id, sku=item.sku, error=str(e)))
                continue

            if product is None:
                conflicts.append(ItemConflict(
                    inventory_item_id=item.id,
                    sku=item.sku,
                    remote_missing=True,
                    error=f"Product {item.shopify_product_id} not found"
                ))
                continue

            conflict = compare_item(item, product)
            if conflict.conflict_types or conflict.remote_missing:
                conflicts.append(conflict)

        logger.info(f"Conflict detection for {store_key}: {len(conflicts)} of {len(items)} items need attention")
        return conflicts
