"""
Connectors - clients for external services
"""
from catalog_sync.connectors.shopify_connector import ShopifyConnector

__all__ = ['ShopifyConnector']
