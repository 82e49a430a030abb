"""
Inventory Repository - Data Access Layer for intake_items

Only the columns the sync engine needs are read, and only the
shopify_* / sync columns are written outside of a manual merge.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from psycopg2 import sql

from catalog_sync.core.database import get_db_connection_dict
from catalog_sync.domain.inventory import MERGEABLE_FIELDS, InventoryItem
from catalog_sync.domain.remote import RemoteProductRefs

logger = logging.getLogger(__name__)

INVENTORY_COLUMNS = """
    id, store_key, shopify_location_gid, sku, type, title, price, quantity,
    brand_title, subject, card_number, variant, category_tag, grade,
    psa_cert, condition, year,
    shopify_product_id, shopify_variant_id, shopify_inventory_item_id,
    shopify_sync_status, last_shopify_sync_error, last_shopify_synced_at,
    created_at, updated_at
"""


class InventoryRepository:
    """
    Repository for InventoryItem data access

    Returns InventoryItem domain models, not raw dictionaries.
    """

    @staticmethod
    def _map_row_to_item(row: dict) -> InventoryItem:
        return InventoryItem(
            id=str(row['id']),
            store_key=row.get('store_key'),
            location_id=row.get('shopify_location_gid'),
            sku=row.get('sku'),
            item_type=row.get('type'),
            title=row.get('title'),
            price=row.get('price'),
            quantity=row.get('quantity') or 0,
            brand_title=row.get('brand_title'),
            subject=row.get('subject'),
            card_number=row.get('card_number'),
            variant=row.get('variant'),
            category_tag=row.get('category_tag'),
            grade=row.get('grade'),
            psa_cert=row.get('psa_cert'),
            condition=row.get('condition'),
            year=row.get('year'),
            shopify_product_id=row.get('shopify_product_id'),
            shopify_variant_id=row.get('shopify_variant_id'),
            shopify_inventory_item_id=row.get('shopify_inventory_item_id'),
            sync_status=row.get('shopify_sync_status') or 'unsynced',
            last_sync_error=row.get('last_shopify_sync_error'),
            last_synced_at=row.get('last_shopify_synced_at'),
            created_at=row.get('created_at'),
            updated_at=row.get('updated_at')
        )

    def _execute(self, query, params: tuple, fetch: str = "one", commit: bool = False):
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(query, params)
            if fetch == "all":
                result = cursor.fetchall()
            elif fetch == "one":
                result = cursor.fetchone()
            else:
                result = cursor.rowcount
            if commit:
                conn.commit()
            return result
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def find_by_id(self, item_id: str) -> Optional[InventoryItem]:
        row = self._execute(f"""
            SELECT {INVENTORY_COLUMNS}
            FROM intake_items
            WHERE id = %s
        """, (item_id,))
        return self._map_row_to_item(row) if row else None

    def find_linked_by_store(self, store_key: str, item_ids: Optional[List[str]] = None,
                             limit: int = 100) -> List[InventoryItem]:
        """Items of a store that already exist remotely"""
        if item_ids:
            rows = self._execute(f"""
                SELECT {INVENTORY_COLUMNS}
                FROM intake_items
                WHERE store_key = %s
                  AND shopify_product_id IS NOT NULL
                  AND id = ANY(%s::uuid[])
                ORDER BY created_at ASC
                LIMIT %s
            """, (store_key, list(item_ids), limit), fetch="all")
        else:
            rows = self._execute(f"""
                SELECT {INVENTORY_COLUMNS}
                FROM intake_items
                WHERE store_key = %s
                  AND shopify_product_id IS NOT NULL
                ORDER BY created_at ASC
                LIMIT %s
            """, (store_key, limit), fetch="all")
        return [self._map_row_to_item(row) for row in rows]

    # =========================================================================
    # Sync state writes
    # =========================================================================

    def link_remote_product(self, item_id: str, refs: RemoteProductRefs) -> bool:
        """Store remote ids right after a create; sync status is left as is"""
        count = self._execute("""
            UPDATE intake_items
            SET shopify_product_id = %s,
                shopify_variant_id = %s,
                shopify_inventory_item_id = %s,
                updated_at = NOW()
            WHERE id = %s
        """, (refs.product_id, refs.variant_id, refs.inventory_item_id, item_id),
            fetch=None, commit=True)
        return count > 0

    def mark_sync_completed(self, item_id: str) -> bool:
        count = self._execute("""
            UPDATE intake_items
            SET shopify_sync_status = 'completed',
                last_shopify_sync_error = NULL,
                last_shopify_synced_at = NOW(),
                updated_at = NOW()
            WHERE id = %s
        """, (item_id,), fetch=None, commit=True)
        return count > 0

    def mark_sync_failed(self, item_id: str, error_message: str) -> bool:
        count = self._execute("""
            UPDATE intake_items
            SET shopify_sync_status = 'failed',
                last_shopify_sync_error = %s,
                updated_at = NOW()
            WHERE id = %s
        """, (error_message, item_id), fetch=None, commit=True)
        return count > 0

    def mark_sync_pending(self, item_ids: List[str]) -> int:
        if not item_ids:
            return 0
        return self._execute("""
            UPDATE intake_items
            SET shopify_sync_status = 'pending',
                updated_at = NOW()
            WHERE id = ANY(%s::uuid[])
        """, (list(item_ids),), fetch=None, commit=True)

    def clear_remote_link(self, item_id: str) -> bool:
        """Forget remote ids after the remote product was deleted"""
        count = self._execute("""
            UPDATE intake_items
            SET shopify_product_id = NULL,
                shopify_variant_id = NULL,
                shopify_inventory_item_id = NULL,
                shopify_sync_status = 'completed',
                last_shopify_sync_error = NULL,
                last_shopify_synced_at = NOW(),
                updated_at = NOW()
            WHERE id = %s
        """, (item_id,), fetch=None, commit=True)
        return count > 0

    # =========================================================================
    # Conflict resolution writes
    # =========================================================================

    def apply_remote_state(self, item_id: str, title: str, price: Decimal, quantity: int,
                           updated_by: str = "conflict_resolution") -> bool:
        """Adopt remote title/price/quantity; the item is in sync afterwards"""
        count = self._execute("""
            UPDATE intake_items
            SET title = %s,
                price = %s,
                quantity = %s,
                shopify_sync_status = 'completed',
                last_shopify_sync_error = NULL,
                last_shopify_synced_at = NOW(),
                updated_at = NOW(),
                updated_by = %s
            WHERE id = %s
        """, (title, price, quantity, updated_by, item_id), fetch=None, commit=True)
        return count > 0


def build_merge_update(item_id: str, fields: Dict[str, Any],
                       updated_by: str = "conflict_resolution_manual") -> Tuple[sql.Composed, tuple]:
    """
    UPDATE for operator-supplied fields that also marks the item pending

    Only MERGEABLE_FIELDS are accepted; callers validate first. Executed by
    SyncQueueRepository.enqueue so the merge and its queue row commit together.

    Returns:
        (query, params)
    """
    unknown = set(fields) - MERGEABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not mergeable: {', '.join(sorted(unknown))}")

    columns = sorted(fields)
    assignments = [
        sql.SQL("{} = %s").format(sql.Identifier(column)) for column in columns
    ]
    query = sql.SQL("""
        UPDATE intake_items
        SET {assignments},
            shopify_sync_status = 'pending',
            updated_at = NOW(),
            updated_by = %s
        WHERE id = %s
    """).format(assignments=sql.SQL(", ").join(assignments))

    params = tuple(fields[column] for column in columns) + (updated_by, item_id)
    return query, params
