"""
Service layer - business logic on top of repositories and connectors
"""
from .conflict_resolver import ConflictResolver, compare_item
from .queue_maintenance_service import QueueMaintenanceService
from .sync_processor import BatchResult, ItemOutcome, SyncProcessor

__all__ = [
    'BatchResult',
    'ConflictResolver',
    'ItemOutcome',
    'QueueMaintenanceService',
    'SyncProcessor',
    'compare_item',
]
