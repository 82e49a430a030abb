"""
Catalog Sync - inventory to Shopify synchronization engine

Durable sync queue, rate-limit aware processor and conflict resolver
for point-of-sale inventory records.
"""
__version__ = "1.0.0"
