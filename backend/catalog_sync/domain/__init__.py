"""
Domain Layer - Business Entities

Pydantic models for inventory items, queue items and conflicts.
"""
from catalog_sync.domain.inventory import InventoryItem, SyncStatus, MERGEABLE_FIELDS
from catalog_sync.domain.sync_queue import SyncQueueItem, SyncAction, QueueStatus
from catalog_sync.domain.remote import RemoteProductRefs, RemoteProduct, RemoteVariant, StoreCredentials
from catalog_sync.domain.conflict import Resolution, ResolutionResult, ItemConflict, ConflictSuggestion

__all__ = [
    'InventoryItem', 'SyncStatus', 'MERGEABLE_FIELDS',
    'SyncQueueItem', 'SyncAction', 'QueueStatus',
    'RemoteProductRefs', 'RemoteProduct', 'RemoteVariant', 'StoreCredentials',
    'Resolution', 'ResolutionResult', 'ItemConflict', 'ConflictSuggestion',
]
