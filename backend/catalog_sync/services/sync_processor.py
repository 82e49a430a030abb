"""
Sync Processor - drains the Shopify sync queue

Processing model:
- One runner at a time (PostgreSQL advisory lock)
- One item at a time, oldest first, atomically claimed
- Fixed pause between items to stay under the Shopify API budget
- Rate limits are paced with a cool-down and never spend retry budget
- Transient errors spend retry budget; permanent errors fail immediately

Called by the /process endpoint or any scheduler; it runs to completion
(or max_items) and returns.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from catalog_sync.connectors.shopify_connector import ShopifyConnector
from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import (
    NotFoundError,
    PermanentRemoteError,
    RateLimitError,
    RemoteCatalogError,
    ValidationError,
)
from catalog_sync.domain.inventory import InventoryItem
from catalog_sync.domain.remote import RemoteProductRefs, StoreCredentials
from catalog_sync.domain.sync_queue import SyncAction, SyncQueueItem
from catalog_sync.repositories import (
    AuditLogRepository,
    InventoryRepository,
    StoreCredentialsRepository,
    SyncQueueRepository,
)

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Rate limited, will retry"
STALE_RECOVERY_MESSAGE = "Recovered from stale processing state"
LOCK_HELD_MESSAGE = "Another processor instance is already running"

# Errors that retrying will not fix
PERMANENT_ERRORS = (ValidationError, NotFoundError, PermanentRemoteError)

ConnectorFactory = Callable[[StoreCredentials], ShopifyConnector]


class ItemOutcome(str, Enum):
    COMPLETED = "completed"
    REQUEUED = "requeued"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"


@dataclass
class BatchResult:
    success: bool
    processed: int
    message: str
    completed: int = 0
    requeued: int = 0
    failed: int = 0
    rate_limited: int = 0
    recovered: int = 0


class SyncProcessor:
    """
    Pushes queued inventory changes to Shopify

    All collaborators are injectable; defaults talk to PostgreSQL and
    the live Shopify API.
    """

    def __init__(
        self,
        queue_repository: Optional[SyncQueueRepository] = None,
        inventory_repository: Optional[InventoryRepository] = None,
        credentials_repository: Optional[StoreCredentialsRepository] = None,
        audit_repository: Optional[AuditLogRepository] = None,
        connector_factory: Optional[ConnectorFactory] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        item_delay_seconds: Optional[float] = None,
        rate_limit_cooldown_seconds: Optional[float] = None,
        default_max_items: Optional[int] = None,
        stale_after_minutes: Optional[int] = None,
    ):
        self.queue = queue_repository or SyncQueueRepository()
        self.inventory = inventory_repository or InventoryRepository()
        self.credentials = credentials_repository or StoreCredentialsRepository()
        self.audit = audit_repository or AuditLogRepository()
        self.connector_factory = connector_factory or ShopifyConnector.from_credentials
        self.sleep = sleep or asyncio.sleep

        self.item_delay_seconds = (
            settings.SYNC_ITEM_DELAY_SECONDS if item_delay_seconds is None else item_delay_seconds
        )
        self.rate_limit_cooldown_seconds = (
            settings.SYNC_RATE_LIMIT_COOLDOWN_SECONDS
            if rate_limit_cooldown_seconds is None else rate_limit_cooldown_seconds
        )
        self.default_max_items = (
            settings.SYNC_BATCH_MAX_ITEMS if default_max_items is None else default_max_items
        )
        self.stale_after_minutes = (
            settings.SYNC_STALE_PROCESSING_MINUTES if stale_after_minutes is None else stale_after_minutes
        )

    # =========================================================================
    # Batch loop
    # =========================================================================

    async def run_batch(self, max_items: Optional[int] = None) -> BatchResult:
        """
        Process up to max_items queued items, oldest created_at first

        Safe to call repeatedly: only items still queued are touched.
        Returns immediately (success=False) if another runner holds the lock.
        """
        max_items = self.default_max_items if max_items is None else max_items

        with self.queue.processor_lock() as acquired:
            if not acquired:
                logger.info(LOCK_HELD_MESSAGE)
                return BatchResult(success=False, processed=0, message=LOCK_HELD_MESSAGE)

            recovered = await self.recover_stale_items()
            result = await self._drain(max_items)
            result.recovered = recovered
            return result

    async def _drain(self, max_items: int) -> BatchResult:
        result = BatchResult(success=True, processed=0, message="")
        logger.info(f"Starting sync batch (max_items={max_items})")

        while result.processed < max_items:
            queue_item = self.queue.claim_next()
            if queue_item is None:
                logger.info("No more items in queue")
                break

            result.processed += 1
            outcome = await self.process_item(queue_item)

            if outcome == ItemOutcome.RATE_LIMITED:
                result.rate_limited += 1
                if result.processed < max_items:
                    logger.warning(
                        f"Rate limited on item {queue_item.id}, cooling down "
                        f"{self.rate_limit_cooldown_seconds:g}s"
                    )
                    await self.sleep(self.rate_limit_cooldown_seconds)
                continue

            if outcome == ItemOutcome.COMPLETED:
                result.completed += 1
            elif outcome == ItemOutcome.REQUEUED:
                result.requeued += 1
            else:
                result.failed += 1

            if result.processed < max_items:
                await self.sleep(self.item_delay_seconds)

        result.message = f"Processed {result.processed} items"
        logger.info(
            f"Sync batch finished: {result.processed} processed, {result.completed} completed, "
            f"{result.requeued} requeued, {result.failed} failed, {result.rate_limited} rate limited"
        )
        return result

    # =========================================================================
    # Single item
    # =========================================================================

    async def process_item(self, queue_item: SyncQueueItem) -> ItemOutcome:
        """Drive one claimed (processing) queue item to its next state"""
        logger.info(f"Processing queue item {queue_item.id} ({queue_item.action.value})")

        try:
            item = self.inventory.find_by_id(queue_item.inventory_item_id)
            if item is None:
                raise NotFoundError(f"Inventory item not found: {queue_item.inventory_item_id}")

            missing = item.missing_sync_fields()
            if missing:
                raise ValidationError(missing)

            connector = self.connector_factory(self.credentials.get_credentials(item.store_key))

            if queue_item.action == SyncAction.DELETE:
                await self._delete(queue_item, item, connector)
            else:
                await self._upsert(queue_item, item, connector)

        except RateLimitError as e:
            self._handle_rate_limit(queue_item, e)
            return ItemOutcome.RATE_LIMITED
        except PERMANENT_ERRORS as e:
            return self._handle_failure(queue_item, e, permanent=True)
        except Exception as e:
            # Transient remote errors and anything unexpected spend retry budget
            return self._handle_failure(queue_item, e, permanent=False)

        return ItemOutcome.COMPLETED

    async def _upsert(self, queue_item: SyncQueueItem, item: InventoryItem,
                      connector: ShopifyConnector) -> None:
        """create and update share upsert semantics"""
        if item.shopify_product_id and not item.shopify_variant_id:
            item = await self._refresh_link(item, connector)

        if item.is_linked:
            refs = await connector.update_product(item)
            logger.info(f"Updated Shopify product {refs.product_id} for item {item.id}")
        else:
            refs = await connector.create_product(item)
            # Breadcrumbs first: a crash after this point must not create a duplicate
            self.queue.record_remote_product(queue_item.id, refs.product_id)
            self.inventory.link_remote_product(item.id, refs)
            logger.info(f"Created Shopify product {refs.product_id} for item {item.id}")

            if refs.inventory_item_id and item.quantity > 0:
                await connector.set_quantity(refs.inventory_item_id, item.location_id, item.quantity)

        self.queue.mark_completed(queue_item.id, refs.product_id)
        self.inventory.mark_sync_completed(item.id)

    async def _delete(self, queue_item: SyncQueueItem, item: InventoryItem,
                      connector: ShopifyConnector) -> None:
        if not item.shopify_product_id:
            logger.info(f"Delete for item {item.id} has no Shopify product, nothing to remove")
            self.queue.mark_completed(queue_item.id)
            self.inventory.mark_sync_completed(item.id)
            return

        product_id = item.shopify_product_id
        deleted = await connector.delete_product(product_id)
        self.queue.mark_completed(queue_item.id, product_id)
        self.inventory.clear_remote_link(item.id)

        if deleted:
            logger.info(f"Deleted Shopify product {product_id} for item {item.id}")
        else:
            logger.info(f"Shopify product {product_id} for item {item.id} was already removed")

    async def _refresh_link(self, item: InventoryItem, connector: ShopifyConnector) -> InventoryItem:
        """
        Fill in variant / inventory item ids for a product we only know by id

        Returns the item with the product link cleared when the product is gone,
        so the caller creates a new one.
        """
        product = await connector.get_product(item.shopify_product_id)
        if product is None or not product.variants:
            logger.warning(f"Shopify product {item.shopify_product_id} for item {item.id} no longer exists")
            return item.model_copy(update={'shopify_product_id': None})

        variant = next((v for v in product.variants if v.sku == item.sku), product.variants[0])
        refs = RemoteProductRefs(
            product_id=product.id,
            variant_id=variant.id,
            inventory_item_id=variant.inventory_item_id
        )
        self.inventory.link_remote_product(item.id, refs)
        return item.model_copy(update={
            'shopify_variant_id': refs.variant_id,
            'shopify_inventory_item_id': refs.inventory_item_id,
        })

    # =========================================================================
    # Outcomes
    # =========================================================================

    def _handle_rate_limit(self, queue_item: SyncQueueItem, error: RateLimitError) -> None:
        if error.retry_after:
            logger.info(f"Shopify suggested retry after {error.retry_after:g}s")
        self.queue.requeue(queue_item.id, RATE_LIMITED_MESSAGE)

    def _handle_failure(self, queue_item: SyncQueueItem, error: Exception, permanent: bool) -> ItemOutcome:
        attempt = queue_item.retry_count + 1
        message = f"Attempt {attempt}/{queue_item.max_retries}: {error}"

        if not permanent and attempt <= queue_item.max_retries:
            self.queue.requeue(queue_item.id, message, retry_count=attempt)
            logger.warning(f"Item {queue_item.id} will retry ({message})")
            return ItemOutcome.REQUEUED

        self.queue.mark_failed(queue_item.id, attempt, message)
        self.inventory.mark_sync_failed(queue_item.inventory_item_id, message)
        logger.error(f"Item {queue_item.id} failed permanently: {message}")

        self._audit("ERROR", "Shopify sync failed permanently", {
            'queueItemId': queue_item.id,
            'inventoryItemId': queue_item.inventory_item_id,
            'action': queue_item.action.value,
            'retryCount': attempt,
            'maxRetries': queue_item.max_retries,
            'permanent': permanent,
            'error': str(error),
            'failedAt': datetime.now(timezone.utc).isoformat()
        })
        return ItemOutcome.FAILED

    def _audit(self, level: str, message: str, context: dict) -> None:
        try:
            self.audit.append(level, message, context, source="shopify_sync_processor")
        except Exception as e:
            logger.error(f"Failed to write audit log '{message}': {e}")

    # =========================================================================
    # Crash recovery
    # =========================================================================

    async def recover_stale_items(self) -> int:
        """
        Return items stuck in processing (crashed runner) to the queue

        When a remote product was already created for the item, its ids are
        linked locally first so the retry updates instead of duplicating.
        Retry budget is not spent.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=self.stale_after_minutes)
        stale_items = self.queue.find_stale_processing(cutoff)

        for queue_item in stale_items:
            if queue_item.shopify_product_id:
                await self._relink_created_product(queue_item)
            self.queue.requeue(queue_item.id, STALE_RECOVERY_MESSAGE)
            logger.warning(f"Recovered stale queue item {queue_item.id}")

        return len(stale_items)

    async def _relink_created_product(self, queue_item: SyncQueueItem) -> None:
        item = self.inventory.find_by_id(queue_item.inventory_item_id)
        if item is None or item.shopify_product_id or not item.store_key:
            return

        try:
            connector = self.connector_factory(self.credentials.get_credentials(item.store_key))
            linked = item.model_copy(update={'shopify_product_id': queue_item.shopify_product_id})
            await self._refresh_link(linked, connector)
        except (RemoteCatalogError, NotFoundError) as e:
            logger.warning(f"Could not relink product {queue_item.shopify_product_id} for item {item.id}: {e}")
