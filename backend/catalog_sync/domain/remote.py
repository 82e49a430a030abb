"""
Remote catalog shapes returned by the Shopify connector
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class RemoteProductRefs(BaseModel):
    """Identifiers of a product created remotely"""
    product_id: str
    variant_id: Optional[str] = None
    inventory_item_id: Optional[str] = None


class StoreCredentials(BaseModel):
    """Per-store Admin API credentials"""
    store_key: str
    domain: str
    access_token: str


class RemoteVariant(BaseModel):
    id: str
    inventory_item_id: Optional[str] = None
    sku: Optional[str] = None
    price: Decimal = Decimal("0")
    inventory_quantity: int = 0


class RemoteProduct(BaseModel):
    id: str
    title: str
    variants: List[RemoteVariant] = []

    def find_variant(self, variant_id: str) -> Optional[RemoteVariant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None
