"""
Sync Queue Repository - Data Access Layer for shopify_sync_queue

All SQL for queue items is centralized here. Status transitions are
guarded in the WHERE clause so a completed/failed item never regresses.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from catalog_sync.core.database import get_db_connection_dict, get_db_connection_dict_with_retry
from catalog_sync.domain.sync_queue import QueueStatus, SyncAction, SyncQueueItem
from catalog_sync.repositories.inventory_repository import build_merge_update

logger = logging.getLogger(__name__)

# pg_try_advisory_lock key reserved for the sync processor
PROCESSOR_LOCK_KEY = 74210531

QUEUE_COLUMNS = """
    id, inventory_item_id, action, status, retry_count, max_retries,
    error_message, created_at, started_at, completed_at, shopify_product_id
"""


class SyncQueueRepository:
    """
    Repository for SyncQueueItem data access

    Returns SyncQueueItem domain models, not raw dictionaries.
    """

    @staticmethod
    def _map_row_to_queue_item(row: dict) -> SyncQueueItem:
        return SyncQueueItem(
            id=str(row['id']),
            inventory_item_id=str(row['inventory_item_id']),
            action=row['action'],
            status=row['status'],
            retry_count=row['retry_count'] or 0,
            max_retries=row['max_retries'] if row['max_retries'] is not None else 3,
            error_message=row.get('error_message'),
            created_at=row.get('created_at'),
            started_at=row.get('started_at'),
            completed_at=row.get('completed_at'),
            shopify_product_id=row.get('shopify_product_id')
        )

    def _fetch_one(self, query: str, params: tuple, commit: bool = False) -> Optional[dict]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(query, params)
            row = cursor.fetchone()
            if commit:
                conn.commit()
            return row
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def _fetch_all(self, query: str, params: tuple, commit: bool = False) -> List[dict]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(query, params)
            rows = cursor.fetchall()
            if commit:
                conn.commit()
            return rows
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    # =========================================================================
    # Reads
    # =========================================================================

    def find_stale_processing(self, started_before: datetime) -> List[SyncQueueItem]:
        """Items stuck in processing since before the given time"""
        rows = self._fetch_all(f"""
            SELECT {QUEUE_COLUMNS}
            FROM shopify_sync_queue
            WHERE status = 'processing'
              AND (started_at IS NULL OR started_at < %s)
            ORDER BY created_at ASC
        """, (started_before,))
        return [self._map_row_to_queue_item(row) for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = self._fetch_all("""
            SELECT status, COUNT(*) AS count
            FROM shopify_sync_queue
            GROUP BY status
        """, ())
        counts = {status.value: 0 for status in QueueStatus}
        for row in rows:
            counts[row['status']] = row['count']
        return counts

    def oldest_queued_at(self) -> Optional[datetime]:
        row = self._fetch_one("""
            SELECT MIN(created_at) AS oldest
            FROM shopify_sync_queue
            WHERE status = 'queued'
        """, ())
        return row['oldest'] if row else None

    # =========================================================================
    # Writes
    # =========================================================================

    def enqueue(self, inventory_item_id: str, action: SyncAction, max_retries: int = 3,
                merge_fields: Optional[Dict[str, Any]] = None) -> SyncQueueItem:
        """
        Insert a queued work item and flag the inventory item as pending

        Both statements run in one transaction. With merge_fields the
        inventory update also writes those fields (manual conflict merge),
        so a merge is never left pending without a queue row.
        """
        merge_statement = build_merge_update(inventory_item_id, merge_fields) if merge_fields else None

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO shopify_sync_queue
                    (inventory_item_id, action, status, retry_count, max_retries, created_at)
                VALUES (%s, %s, 'queued', 0, %s, NOW())
                RETURNING {QUEUE_COLUMNS}
            """, (inventory_item_id, SyncAction(action).value, max_retries))
            row = cursor.fetchone()

            if merge_statement:
                cursor.execute(*merge_statement)
            else:
                cursor.execute("""
                    UPDATE intake_items
                    SET shopify_sync_status = 'pending',
                        updated_at = NOW()
                    WHERE id = %s
                """, (inventory_item_id,))

            conn.commit()
            return self._map_row_to_queue_item(row)
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()

    def claim_next(self) -> Optional[SyncQueueItem]:
        """
        Atomically claim the oldest queued item

        The row is locked and moved to processing in one statement;
        concurrent runners skip rows another transaction holds.
        """
        row = self._fetch_one(f"""
            UPDATE shopify_sync_queue
            SET status = 'processing',
                started_at = NOW()
            WHERE id = (
                SELECT id
                FROM shopify_sync_queue
                WHERE status = 'queued'
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                FOR UPDATE SKIP LOCKED
            )
            AND status = 'queued'
            RETURNING {QUEUE_COLUMNS}
        """, (), commit=True)
        return self._map_row_to_queue_item(row) if row else None

    def record_remote_product(self, queue_item_id: str, shopify_product_id: str) -> None:
        """Breadcrumb written right after a remote create succeeds"""
        self._fetch_one("""
            UPDATE shopify_sync_queue
            SET shopify_product_id = %s
            WHERE id = %s AND status = 'processing'
            RETURNING id
        """, (shopify_product_id, queue_item_id), commit=True)

    def mark_completed(self, queue_item_id: str, shopify_product_id: Optional[str] = None) -> bool:
        row = self._fetch_one("""
            UPDATE shopify_sync_queue
            SET status = 'completed',
                completed_at = NOW(),
                error_message = NULL,
                shopify_product_id = COALESCE(%s, shopify_product_id)
            WHERE id = %s AND status = 'processing'
            RETURNING id
        """, (shopify_product_id, queue_item_id), commit=True)
        return row is not None

    def requeue(self, queue_item_id: str, error_message: str, retry_count: Optional[int] = None) -> bool:
        """
        Return a processing item to the queue

        retry_count None keeps the current count (rate limits, stale recovery).
        """
        row = self._fetch_one("""
            UPDATE shopify_sync_queue
            SET status = 'queued',
                started_at = NULL,
                error_message = %s,
                retry_count = COALESCE(%s, retry_count)
            WHERE id = %s AND status = 'processing'
            RETURNING id
        """, (error_message, retry_count, queue_item_id), commit=True)
        return row is not None

    def mark_failed(self, queue_item_id: str, retry_count: int, error_message: str) -> bool:
        row = self._fetch_one("""
            UPDATE shopify_sync_queue
            SET status = 'failed',
                retry_count = %s,
                error_message = %s,
                started_at = NULL,
                completed_at = NOW()
            WHERE id = %s AND status = 'processing'
            RETURNING id
        """, (retry_count, error_message, queue_item_id), commit=True)
        return row is not None

    def reset_failed(self, queue_item_ids: Optional[List[str]] = None) -> List[SyncQueueItem]:
        """Give failed items a fresh retry budget (operator retry)"""
        if queue_item_ids:
            rows = self._fetch_all(f"""
                UPDATE shopify_sync_queue
                SET status = 'queued', retry_count = 0, error_message = NULL,
                    started_at = NULL, completed_at = NULL
                WHERE status = 'failed' AND id = ANY(%s::uuid[])
                RETURNING {QUEUE_COLUMNS}
            """, (list(queue_item_ids),), commit=True)
        else:
            rows = self._fetch_all(f"""
                UPDATE shopify_sync_queue
                SET status = 'queued', retry_count = 0, error_message = NULL,
                    started_at = NULL, completed_at = NULL
                WHERE status = 'failed'
                RETURNING {QUEUE_COLUMNS}
            """, (), commit=True)
        return [self._map_row_to_queue_item(row) for row in rows]

    def delete_completed_before(self, cutoff: datetime) -> int:
        rows = self._fetch_all("""
            DELETE FROM shopify_sync_queue
            WHERE status = 'completed' AND completed_at < %s
            RETURNING id
        """, (cutoff,), commit=True)
        return len(rows)

    def archive_failed_before(self, cutoff: datetime) -> int:
        rows = self._fetch_all("""
            UPDATE shopify_sync_queue
            SET error_message = COALESCE(error_message, '') || ' [ARCHIVED]'
            WHERE status = 'failed'
              AND created_at < %s
              AND COALESCE(error_message, '') NOT LIKE '%%[ARCHIVED]%%'
            RETURNING id
        """, (cutoff,), commit=True)
        return len(rows)

    # =========================================================================
    # Single-writer lock
    # =========================================================================

    @contextmanager
    def processor_lock(self):
        """
        Session advisory lock held for the duration of a batch

        Yields True when acquired, False when another runner holds it.
        """
        conn = get_db_connection_dict_with_retry()
        conn.autocommit = True
        cursor = conn.cursor()
        acquired = False

        try:
            cursor.execute("SELECT pg_try_advisory_lock(%s) AS acquired", (PROCESSOR_LOCK_KEY,))
            row = cursor.fetchone()
            acquired = bool(row and row['acquired'])
            yield acquired
        finally:
            if acquired:
                try:
                    cursor.execute("SELECT pg_advisory_unlock(%s)", (PROCESSOR_LOCK_KEY,))
                except Exception as e:
                    logger.error(f"Failed to release processor lock: {e}")
            cursor.close()
            conn.close()
