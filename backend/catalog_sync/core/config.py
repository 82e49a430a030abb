"""
Centralized application configuration
"""
import json
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # API Settings
    API_TITLE: str = "Catalog Sync API"
    API_VERSION: str = "1.0.0"
    API_DESCRIPTION: str = "Inventory to Shopify synchronization engine"

    # Database
    DATABASE_URL: str = ""

    # Protects the trigger endpoints (X-Sync-Key header)
    SYNC_API_KEY: Optional[str] = None

    # CORS - Can be string (comma-separated) or JSON array
    ALLOWED_ORIGINS: Optional[str] = "http://localhost:3000"

    LOG_LEVEL: str = "INFO"

    # Shopify
    SHOPIFY_API_VERSION: str = "2024-07"
    SHOPIFY_REQUEST_TIMEOUT: float = 30.0

    # Sync processor
    SYNC_BATCH_MAX_ITEMS: int = 50
    SYNC_DEFAULT_MAX_RETRIES: int = 3
    SYNC_ITEM_DELAY_SECONDS: float = 2.0
    SYNC_RATE_LIMIT_COOLDOWN_SECONDS: float = 30.0
    SYNC_STALE_PROCESSING_MINUTES: int = 15

    # Queue maintenance
    SYNC_CLEANUP_COMPLETED_DAYS: int = 7
    SYNC_ARCHIVE_FAILED_DAYS: int = 30

    # Conflict detection
    CONFLICT_DETECTION_LIMIT: int = 100

    def get_allowed_origins(self) -> List[str]:
        """Parse ALLOWED_ORIGINS string into list"""
        if not self.ALLOWED_ORIGINS:
            return ["http://localhost:3000"]

        # Try JSON parse first (for array format)
        try:
            origins = json.loads(self.ALLOWED_ORIGINS)
            if isinstance(origins, list):
                return origins
        except (json.JSONDecodeError, ValueError):
            pass

        # Fall back to comma-separated string
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
