"""
Tests for QueueMaintenanceService
"""
from datetime import datetime, timedelta, timezone

import pytest

from catalog_sync.domain.inventory import SyncStatus
from catalog_sync.domain.sync_queue import QueueStatus
from catalog_sync.services.queue_maintenance_service import QueueMaintenanceService


@pytest.fixture
def maintenance(queue_repo, inventory_repo, audit_repo):
    return QueueMaintenanceService(
        queue_repository=queue_repo,
        inventory_repository=inventory_repo,
        audit_repository=audit_repo,
        cleanup_completed_days=7,
        archive_failed_days=30
    )


class TestRetryFailed:

    def test_requeues_failed_with_fresh_budget(self, maintenance, queue_repo, inventory_repo, audit_repo):
        # Arrange
        inventory_repo.add("item-1", sync_status=SyncStatus.FAILED)
        failed = queue_repo.add("item-1", status=QueueStatus.FAILED, retry_count=4,
                                error_message="Attempt 4/3: boom")
        done = queue_repo.add("item-1", status=QueueStatus.COMPLETED)

        # Act
        items = maintenance.retry_failed()

        # Assert
        assert [item.id for item in items] == [failed.id]
        stored = queue_repo.items[failed.id]
        assert stored.status == QueueStatus.QUEUED
        assert stored.retry_count == 0
        assert stored.error_message is None
        assert queue_repo.items[done.id].status == QueueStatus.COMPLETED
        assert inventory_repo.items["item-1"].sync_status == SyncStatus.PENDING
        assert audit_repo.entries[0]['context']['count'] == 1

    def test_only_selected_ids(self, maintenance, queue_repo, inventory_repo):
        inventory_repo.add("a")
        inventory_repo.add("b")
        first = queue_repo.add("a", status=QueueStatus.FAILED)
        second = queue_repo.add("b", status=QueueStatus.FAILED)

        maintenance.retry_failed([second.id])

        assert queue_repo.items[first.id].status == QueueStatus.FAILED
        assert queue_repo.items[second.id].status == QueueStatus.QUEUED

    def test_nothing_to_retry(self, maintenance, audit_repo):
        assert maintenance.retry_failed() == []
        assert audit_repo.entries == []


class TestCleanup:

    def test_deletes_old_completed_and_archives_old_failed(self, maintenance, queue_repo, audit_repo):
        # Arrange
        now = datetime.now(timezone.utc)
        old_done = queue_repo.add("a", status=QueueStatus.COMPLETED, completed_at=now - timedelta(days=8))
        new_done = queue_repo.add("b", status=QueueStatus.COMPLETED, completed_at=now - timedelta(days=1))
        old_failed = queue_repo.add("c", status=QueueStatus.FAILED, error_message="boom",
                                    created_at=now - timedelta(days=31))
        new_failed = queue_repo.add("d", status=QueueStatus.FAILED, error_message="boom",
                                    created_at=now - timedelta(days=2))

        # Act
        result = maintenance.cleanup()

        # Assert
        assert result.deleted_completed == 1
        assert result.archived_failed == 1
        assert old_done.id not in queue_repo.items
        assert new_done.id in queue_repo.items
        assert queue_repo.items[old_failed.id].error_message == "boom [ARCHIVED]"
        assert queue_repo.items[new_failed.id].error_message == "boom"
        assert audit_repo.entries[0]['context']['deletedCompleted'] == 1

    def test_archive_is_not_repeated(self, maintenance, queue_repo):
        now = datetime.now(timezone.utc)
        queue_repo.add("c", status=QueueStatus.FAILED, error_message="boom",
                       created_at=now - timedelta(days=40))

        maintenance.cleanup()
        second = maintenance.cleanup()

        assert second.archived_failed == 0


class TestQueueStats:

    def test_counts_and_failure_rate(self, maintenance, queue_repo):
        queue_repo.add("a", status=QueueStatus.COMPLETED)
        queue_repo.add("b", status=QueueStatus.COMPLETED)
        queue_repo.add("c", status=QueueStatus.COMPLETED)
        queue_repo.add("d", status=QueueStatus.FAILED)
        oldest = queue_repo.add("e")
        queue_repo.add("f")

        stats = maintenance.get_queue_stats()

        assert stats.counts == {'queued': 2, 'processing': 0, 'completed': 3, 'failed': 1}
        assert stats.total == 6
        assert stats.failure_rate == 0.25
        assert stats.oldest_queued_at == oldest.created_at
        assert stats.to_dict()['oldestQueuedAt'] == oldest.created_at.isoformat()

    def test_empty_queue(self, maintenance):
        stats = maintenance.get_queue_stats()

        assert stats.total == 0
        assert stats.failure_rate == 0.0
        assert stats.oldest_queued_at is None
