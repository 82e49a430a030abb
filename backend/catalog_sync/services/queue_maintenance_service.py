"""
Queue Maintenance Service - operator actions on the sync queue

Retry of failed items, cleanup of old rows and queue health stats.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from catalog_sync.core.config import settings
from catalog_sync.domain.sync_queue import QueueStatus, SyncQueueItem
from catalog_sync.repositories import AuditLogRepository, InventoryRepository, SyncQueueRepository

logger = logging.getLogger(__name__)


@dataclass
class CleanupResult:
    deleted_completed: int
    archived_failed: int


@dataclass
class QueueStats:
    counts: Dict[str, int] = field(default_factory=dict)
    total: int = 0
    oldest_queued_at: Optional[datetime] = None
    failure_rate: float = 0.0

    def to_dict(self) -> dict:
        return {
            'counts': self.counts,
            'total': self.total,
            'oldestQueuedAt': self.oldest_queued_at.isoformat() if self.oldest_queued_at else None,
            'failureRate': self.failure_rate,
        }


class QueueMaintenanceService:

    def __init__(
        self,
        queue_repository: Optional[SyncQueueRepository] = None,
        inventory_repository: Optional[InventoryRepository] = None,
        audit_repository: Optional[AuditLogRepository] = None,
        cleanup_completed_days: Optional[int] = None,
        archive_failed_days: Optional[int] = None,
    ):
        self.queue = queue_repository or SyncQueueRepository()
        self.inventory = inventory_repository or InventoryRepository()
        self.audit = audit_repository or AuditLogRepository()
        self.cleanup_completed_days = cleanup_completed_days or settings.SYNC_CLEANUP_COMPLETED_DAYS
        self.archive_failed_days = archive_failed_days or settings.SYNC_ARCHIVE_FAILED_DAYS

    def retry_failed(self, queue_item_ids: Optional[List[str]] = None) -> List[SyncQueueItem]:
        """Requeue failed items with a fresh retry budget"""
        items = self.queue.reset_failed(queue_item_ids)
        if not items:
            logger.info("No failed queue items to retry")
            return []

        self.inventory.mark_sync_pending([item.inventory_item_id for item in items])
        logger.info(f"Requeued {len(items)} failed queue items")
        self._audit("INFO", "Failed Shopify sync items requeued", {
            'count': len(items),
            'queueItemIds': [item.id for item in items],
        })
        return items

    def cleanup(self) -> CleanupResult:
        """Delete old completed rows and tag old failed rows as archived"""
        now = datetime.now(timezone.utc)
        deleted = self.queue.delete_completed_before(now - timedelta(days=self.cleanup_completed_days))
        archived = self.queue.archive_failed_before(now - timedelta(days=self.archive_failed_days))

        logger.info(f"Queue cleanup: {deleted} completed deleted, {archived} failed archived")
        self._audit("INFO", "Shopify sync queue cleanup", {
            'deletedCompleted': deleted,
            'archivedFailed': archived,
            'completedRetentionDays': self.cleanup_completed_days,
            'failedRetentionDays': self.archive_failed_days,
        })
        return CleanupResult(deleted_completed=deleted, archived_failed=archived)

    def get_queue_stats(self) -> QueueStats:
        counts = self.queue.count_by_status()
        total = sum(counts.values())

        # Failure rate over items that reached a terminal state
        finished = counts.get(QueueStatus.COMPLETED.value, 0) + counts.get(QueueStatus.FAILED.value, 0)
        failure_rate = counts.get(QueueStatus.FAILED.value, 0) / finished if finished else 0.0

        return QueueStats(
            counts=counts,
            total=total,
            oldest_queued_at=self.queue.oldest_queued_at(),
            failure_rate=round(failure_rate, 4)
        )

    def _audit(self, level: str, message: str, context: dict) -> None:
        try:
            self.audit.append(level, message, context, source="shopify_queue_maintenance")
        except Exception as e:
            logger.error(f"Failed to write audit log '{message}': {e}")
