"""
Pytest fixtures and configuration for Catalog Sync tests

In-memory fakes of the repositories and the Shopify connector let the
processor and resolver run end-to-end without PostgreSQL or Shopify.
"""
import os
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from itertools import count
from typing import Dict, List, Optional

import pytest
from dotenv import load_dotenv

from catalog_sync.core.exceptions import NotFoundError
from catalog_sync.domain.inventory import MERGEABLE_FIELDS, InventoryItem, SyncStatus
from catalog_sync.domain.remote import RemoteProduct, RemoteProductRefs, RemoteVariant, StoreCredentials
from catalog_sync.domain.sync_queue import QueueStatus, SyncAction, SyncQueueItem

# Load environment variables for tests
load_dotenv()

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# Fakes
# ============================================================================

class FakeSyncQueueRepository:
    """Queue store kept in a dict; mirrors the guarded SQL transitions"""

    def __init__(self, inventory: Optional["FakeInventoryRepository"] = None):
        self.items: Dict[str, SyncQueueItem] = {}
        self.inventory = inventory
        self.lock_held = False
        self.claims: List[str] = []
        # raised by enqueue before anything is written
        self.enqueue_error: Optional[Exception] = None
        self._ids = count(1)
        self._clock = count(0)

    def add(self, inventory_item_id: str, action=SyncAction.CREATE, **fields) -> SyncQueueItem:
        """Seed an item directly (test setup)"""
        queue_id = f"q{next(self._ids)}"
        fields.setdefault('created_at', BASE_TIME + timedelta(seconds=next(self._clock)))
        item = SyncQueueItem(id=queue_id, inventory_item_id=inventory_item_id, action=action, **fields)
        self.items[queue_id] = item
        return item

    def _update(self, queue_item_id: str, **fields) -> SyncQueueItem:
        item = self.items[queue_item_id].model_copy(update=fields)
        self.items[queue_item_id] = item
        return item

    def _processing(self, queue_item_id: str) -> bool:
        item = self.items.get(queue_item_id)
        return item is not None and item.status == QueueStatus.PROCESSING

    def items_for(self, inventory_item_id):
        """Test helper: queue items of one inventory item"""
        return [i for i in self.items.values() if i.inventory_item_id == inventory_item_id]

    def find_stale_processing(self, started_before):
        return [
            i for i in self.items.values()
            if i.status == QueueStatus.PROCESSING and (i.started_at is None or i.started_at < started_before)
        ]

    def count_by_status(self):
        counts = {status.value: 0 for status in QueueStatus}
        for item in self.items.values():
            counts[item.status.value] += 1
        return counts

    def oldest_queued_at(self):
        queued = [i.created_at for i in self.items.values() if i.status == QueueStatus.QUEUED]
        return min(queued) if queued else None

    def enqueue(self, inventory_item_id, action, max_retries=3, merge_fields=None):
        """Queue row and inventory write commit together, or neither does"""
        if merge_fields:
            unknown = set(merge_fields) - MERGEABLE_FIELDS
            if unknown:
                raise ValueError(f"Fields not mergeable: {', '.join(sorted(unknown))}")
        if self.enqueue_error is not None:
            raise self.enqueue_error

        item = self.add(inventory_item_id, SyncAction(action), max_retries=max_retries)
        if self.inventory is not None:
            if merge_fields:
                self.inventory.write_merge(inventory_item_id, merge_fields)
            else:
                self.inventory.mark_sync_pending([inventory_item_id])
        return item

    def claim_next(self):
        queued = [i for i in self.items.values() if i.status == QueueStatus.QUEUED]
        if not queued:
            return None
        oldest = min(queued, key=lambda i: (i.created_at, i.id))
        self.claims.append(oldest.id)
        return self._update(oldest.id, status=QueueStatus.PROCESSING, started_at=datetime.now(timezone.utc))

    def record_remote_product(self, queue_item_id, shopify_product_id):
        if self._processing(queue_item_id):
            self._update(queue_item_id, shopify_product_id=shopify_product_id)

    def mark_completed(self, queue_item_id, shopify_product_id=None):
        if not self._processing(queue_item_id):
            return False
        self._update(
            queue_item_id,
            status=QueueStatus.COMPLETED,
            completed_at=datetime.now(timezone.utc),
            error_message=None,
            shopify_product_id=shopify_product_id or self.items[queue_item_id].shopify_product_id
        )
        return True

    def requeue(self, queue_item_id, error_message, retry_count=None):
        if not self._processing(queue_item_id):
            return False
        current = self.items[queue_item_id]
        self._update(
            queue_item_id,
            status=QueueStatus.QUEUED,
            started_at=None,
            error_message=error_message,
            retry_count=current.retry_count if retry_count is None else retry_count
        )
        return True

    def mark_failed(self, queue_item_id, retry_count, error_message):
        if not self._processing(queue_item_id):
            return False
        self._update(
            queue_item_id,
            status=QueueStatus.FAILED,
            retry_count=retry_count,
            error_message=error_message,
            started_at=None,
            completed_at=datetime.now(timezone.utc)
        )
        return True

    def reset_failed(self, queue_item_ids=None):
        reset = []
        for item in list(self.items.values()):
            if item.status != QueueStatus.FAILED:
                continue
            if queue_item_ids and item.id not in queue_item_ids:
                continue
            reset.append(self._update(
                item.id, status=QueueStatus.QUEUED, retry_count=0,
                error_message=None, started_at=None, completed_at=None
            ))
        return reset

    def delete_completed_before(self, cutoff):
        old = [
            i.id for i in self.items.values()
            if i.status == QueueStatus.COMPLETED and i.completed_at and i.completed_at < cutoff
        ]
        for queue_id in old:
            del self.items[queue_id]
        return len(old)

    def archive_failed_before(self, cutoff):
        archived = 0
        for item in list(self.items.values()):
            message = item.error_message or ''
            if item.status == QueueStatus.FAILED and item.created_at < cutoff and '[ARCHIVED]' not in message:
                self._update(item.id, error_message=f"{message} [ARCHIVED]")
                archived += 1
        return archived

    @contextmanager
    def processor_lock(self):
        if self.lock_held:
            yield False
            return
        self.lock_held = True
        try:
            yield True
        finally:
            self.lock_held = False


class FakeInventoryRepository:

    def __init__(self):
        self.items: Dict[str, InventoryItem] = {}
        self.writes: List[str] = []

    def add(self, item_id: str, **fields) -> InventoryItem:
        defaults = {
            'store_key': 'hawaii',
            'location_id': 'gid://shopify/Location/1001',
            'sku': f"SKU-{item_id}",
            'item_type': 'Raw',
            'price': Decimal('10.00'),
            'quantity': 1,
        }
        defaults.update(fields)
        item = InventoryItem(id=item_id, **defaults)
        self.items[item_id] = item
        return item

    def _update(self, item_id, operation, **fields) -> bool:
        if item_id not in self.items:
            return False
        self.writes.append(operation)
        self.items[item_id] = self.items[item_id].model_copy(update=fields)
        return True

    def find_by_id(self, item_id):
        return self.items.get(item_id)

    def find_linked_by_store(self, store_key, item_ids=None, limit=100):
        linked = [
            i for i in self.items.values()
            if i.store_key == store_key and i.shopify_product_id
            and (not item_ids or i.id in item_ids)
        ]
        return linked[:limit]

    def link_remote_product(self, item_id, refs: RemoteProductRefs):
        return self._update(
            item_id, 'link_remote_product',
            shopify_product_id=refs.product_id,
            shopify_variant_id=refs.variant_id,
            shopify_inventory_item_id=refs.inventory_item_id
        )

    def mark_sync_completed(self, item_id):
        return self._update(
            item_id, 'mark_sync_completed',
            sync_status=SyncStatus.COMPLETED,
            last_sync_error=None,
            last_synced_at=datetime.now(timezone.utc)
        )

    def mark_sync_failed(self, item_id, error_message):
        return self._update(
            item_id, 'mark_sync_failed',
            sync_status=SyncStatus.FAILED,
            last_sync_error=error_message
        )

    def mark_sync_pending(self, item_ids):
        return sum(
            1 for item_id in item_ids
            if self._update(item_id, 'mark_sync_pending', sync_status=SyncStatus.PENDING)
        )

    def clear_remote_link(self, item_id):
        return self._update(
            item_id, 'clear_remote_link',
            shopify_product_id=None,
            shopify_variant_id=None,
            shopify_inventory_item_id=None,
            sync_status=SyncStatus.COMPLETED,
            last_sync_error=None,
            last_synced_at=datetime.now(timezone.utc)
        )

    def apply_remote_state(self, item_id, title, price, quantity, updated_by="conflict_resolution"):
        return self._update(
            item_id, 'apply_remote_state',
            title=title,
            price=price,
            quantity=quantity,
            sync_status=SyncStatus.COMPLETED,
            last_sync_error=None,
            last_synced_at=datetime.now(timezone.utc)
        )

    def write_merge(self, item_id, fields):
        """Merged-field write performed inside SyncQueueRepository.enqueue"""
        return self._update(item_id, 'apply_merge', sync_status=SyncStatus.PENDING, **fields)


class FakeAuditLogRepository:

    def __init__(self):
        self.entries: List[dict] = []

    def append(self, level, message, context=None, source="catalog_sync"):
        self.entries.append({'level': level, 'message': message, 'context': context or {}, 'source': source})


class FakeCredentialsRepository:

    def __init__(self, stores: Optional[Dict[str, str]] = None):
        self.stores = stores if stores is not None else {'hawaii': 'hawaii-cards.myshopify.com'}

    def get_credentials(self, store_key):
        if store_key not in self.stores:
            raise NotFoundError(f"Store not found: {store_key}")
        return StoreCredentials(store_key=store_key, domain=self.stores[store_key], access_token="shpat_test")


class FakeShopifyConnector:
    """
    Scriptable stand-in for ShopifyConnector

    fail(method, *errors): errors raised, in order, by the next calls to method
    products: remote catalog state returned by get_product
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = defaultdict(list)
        self.products: Dict[str, RemoteProduct] = {}
        self.next_refs: List[RemoteProductRefs] = []
        # product ids the remote reports as already deleted
        self.gone: set = set()
        self._ids = count(1)

    def fail(self, method, *errors):
        self.failures[method].extend(errors)

    def _maybe_fail(self, method):
        if self.failures[method]:
            raise self.failures[method].pop(0)

    def add_product(self, product_id, title, variant_id, price, quantity, inventory_item_id=None, sku=None):
        product = RemoteProduct(id=product_id, title=title, variants=[RemoteVariant(
            id=variant_id,
            inventory_item_id=inventory_item_id,
            sku=sku,
            price=Decimal(str(price)),
            inventory_quantity=quantity
        )])
        self.products[product_id] = product
        return product

    async def create_product(self, item):
        self.calls.append(('create_product', item.id))
        self._maybe_fail('create_product')
        if self.next_refs:
            return self.next_refs.pop(0)
        n = next(self._ids)
        return RemoteProductRefs(product_id=f"P{n}", variant_id=f"V{n}", inventory_item_id=f"I{n}")

    async def set_quantity(self, inventory_item_id, location_id, quantity):
        self.calls.append(('set_quantity', inventory_item_id, quantity))
        self._maybe_fail('set_quantity')

    async def update_product(self, item):
        self.calls.append(('update_product', item.id))
        self._maybe_fail('update_product')
        return RemoteProductRefs(
            product_id=item.shopify_product_id,
            variant_id=item.shopify_variant_id,
            inventory_item_id=item.shopify_inventory_item_id
        )

    async def delete_product(self, product_id):
        self.calls.append(('delete_product', product_id))
        self._maybe_fail('delete_product')
        return product_id not in self.gone

    async def get_product(self, product_id):
        self.calls.append(('get_product', product_id))
        self._maybe_fail('get_product')
        return self.products.get(product_id)


class FakeSleep:
    """Records requested delays instead of sleeping"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def inventory_repo():
    return FakeInventoryRepository()


@pytest.fixture
def queue_repo(inventory_repo):
    return FakeSyncQueueRepository(inventory_repo)


@pytest.fixture
def audit_repo():
    return FakeAuditLogRepository()


@pytest.fixture
def credentials_repo():
    return FakeCredentialsRepository()


@pytest.fixture
def connector():
    return FakeShopifyConnector()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def processor(queue_repo, inventory_repo, credentials_repo, audit_repo, connector, fake_sleep):
    """SyncProcessor wired to in-memory fakes with the production delays"""
    from catalog_sync.services.sync_processor import SyncProcessor

    return SyncProcessor(
        queue_repository=queue_repo,
        inventory_repository=inventory_repo,
        credentials_repository=credentials_repo,
        audit_repository=audit_repo,
        connector_factory=lambda credentials: connector,
        sleep=fake_sleep,
        item_delay_seconds=2.0,
        rate_limit_cooldown_seconds=30.0,
        default_max_items=50,
        stale_after_minutes=15
    )


@pytest.fixture
def resolver(queue_repo, inventory_repo, credentials_repo, audit_repo, connector):
    from catalog_sync.services.conflict_resolver import ConflictResolver

    return ConflictResolver(
        queue_repository=queue_repo,
        inventory_repository=inventory_repo,
        credentials_repository=credentials_repo,
        audit_repository=audit_repo,
        connector_factory=lambda credentials: connector,
        max_retries=3,
        detection_limit=100
    )


@pytest.fixture
def mock_db():
    """
    MagicMock psycopg2 connection + cursor pair

    Patch get_db_connection_dict in the module under test to return
    mock_db[0]; the cursor is mock_db[1].
    """
    from unittest.mock import MagicMock

    mock_conn = MagicMock()
    mock_cursor = MagicMock()
    mock_conn.cursor.return_value = mock_cursor
    return mock_conn, mock_cursor


@pytest.fixture(scope="session")
def database_url():
    """
    Provides the database URL for integration tests

    Scope: session (created once per test session)
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("DATABASE_URL not configured")
    return url
