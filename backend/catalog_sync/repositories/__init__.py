"""
Repository Layer - Data Access

This layer handles all database queries and returns domain models.
Repositories abstract away SQL details from business logic.
"""
from catalog_sync.repositories.sync_queue_repository import SyncQueueRepository
from catalog_sync.repositories.inventory_repository import InventoryRepository
from catalog_sync.repositories.audit_log_repository import AuditLogRepository
from catalog_sync.repositories.store_credentials_repository import StoreCredentialsRepository

__all__ = [
    'SyncQueueRepository',
    'InventoryRepository',
    'AuditLogRepository',
    'StoreCredentialsRepository'
]
