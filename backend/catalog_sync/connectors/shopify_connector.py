"""
Shopify GraphQL Connector
Remote catalog client used by the sync processor and conflict resolver

Handles:
- Product creation (one variant, priced and SKU'd from the inventory item)
- On-hand quantity updates
- Pushing local title/price/quantity to an existing product
- Product deletion
- Read-only product lookups

Every remote failure is translated into one of three errors the
processor understands:
- RateLimitError: HTTP 429, GraphQL THROTTLED, or a RATE_LIMIT marker
- PermanentRemoteError: other HTTP 4xx, userErrors
- TransientRemoteError: 5xx, network errors, anything unrecognized
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from catalog_sync.core.config import settings
from catalog_sync.core.exceptions import (
    PermanentRemoteError,
    RateLimitError,
    TransientRemoteError,
)
from catalog_sync.domain.inventory import InventoryItem
from catalog_sync.domain.remote import (
    RemoteProduct,
    RemoteProductRefs,
    RemoteVariant,
    StoreCredentials,
)

logger = logging.getLogger(__name__)

# Error text markers that mean "slow down" rather than "broken"
RATE_LIMIT_MARKERS = ("RATE_LIMIT", "THROTTLED", "Throttled")

# Warn when the remote API bucket is this full
API_USAGE_WARNING_PERCENT = 80.0


PRODUCT_CREATE_MUTATION = """
mutation productCreate($input: ProductInput!) {
  productCreate(input: $input) {
    product {
      id
      title
      variants(first: 1) {
        edges {
          node {
            id
            inventoryItem {
              id
            }
          }
        }
      }
    }
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_UPDATE_MUTATION = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""

VARIANTS_BULK_UPDATE_MUTATION = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""

SET_ON_HAND_MUTATION = """
mutation inventorySetOnHandQuantities($input: InventorySetOnHandQuantitiesInput!) {
  inventorySetOnHandQuantities(input: $input) {
    inventoryAdjustmentGroup {
      id
    }
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_DELETE_MUTATION = """
mutation productDelete($input: ProductDeleteInput!) {
  productDelete(input: $input) {
    deletedProductId
    userErrors {
      field
      message
    }
  }
}
"""

PRODUCT_QUERY = """
query getProduct($id: ID!) {
  product(id: $id) {
    id
    title
    variants(first: 10) {
      edges {
        node {
          id
          sku
          price
          inventoryQuantity
          inventoryItem {
            id
          }
        }
      }
    }
  }
}
"""


def location_gid(location_id: str) -> str:
    """Normalize a numeric id or any Location GID to gid://shopify/Location/<n>"""
    numeric_id = str(location_id).rstrip("/").split("/")[-1]
    return f"gid://shopify/Location/{numeric_id}"


def build_product_input(item: InventoryItem) -> Dict[str, Any]:
    """ProductInput for a freshly created single-variant product"""
    if item.is_graded:
        body_html = (
            f"<p>Graded Card - {item.grade or 'Grade Unknown'}</p>"
            f"<p>Certificate: {item.psa_cert or 'N/A'}</p>"
        )
    else:
        body_html = f"<p>Trading Card</p><p>Condition: {item.condition or 'Good'}</p>"

    price = item.price if item.price is not None else Decimal("0")

    return {
        "title": item.product_title(),
        "bodyHtml": body_html,
        "vendor": item.brand_title or "Trading Cards",
        "productType": item.category_tag or "Trading Card",
        "tags": [t for t in (item.item_type, item.brand_title, item.category_tag) if t],
        "variants": [{
            "price": f"{price:.2f}",
            "sku": item.sku,
            "inventoryManagement": "SHOPIFY",
            "inventoryPolicy": "DENY",
        }],
        "status": "ACTIVE",
    }


class ShopifyConnector:
    """
    Connector for the Shopify Admin GraphQL API of one store
    """

    def __init__(self, domain: str, access_token: str, api_version: str = None,
                 timeout: float = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize Shopify connector

        Args:
            domain: Store domain (e.g., 'cards.myshopify.com')
            access_token: Shopify Admin API access token
            api_version: Admin API version, defaults to SHOPIFY_API_VERSION
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not domain or not access_token:
            raise ValueError("Shopify credentials not configured (domain and access token are required)")

        self.domain = domain
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_REQUEST_TIMEOUT
        self.api_url = f"https://{domain}/admin/api/{self.api_version}/graphql.json"
        self.headers = {
            'Content-Type': 'application/json',
            'X-Shopify-Access-Token': access_token
        }
        self._transport = transport

    @classmethod
    def from_credentials(cls, credentials: StoreCredentials) -> "ShopifyConnector":
        return cls(domain=credentials.domain, access_token=credentials.access_token)

    # =========================================================================
    # Transport and error classification
    # =========================================================================

    async def _execute_query(self, query: str, variables: Dict = None) -> Dict:
        """Execute a GraphQL operation and return its data block"""
        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
            try:
                response = await client.post(self.api_url, json=payload, headers=self.headers)
            except httpx.TimeoutException as e:
                raise TransientRemoteError(f"Shopify request timed out: {e}")
            except httpx.TransportError as e:
                raise TransientRemoteError(f"Shopify network error: {e}")

        self._log_api_usage(response)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response.headers.get('Retry-After'))
            detail = f"Retry after {retry_after:g}s" if retry_after else "Shopify rate limit exceeded"
            raise RateLimitError(f"RATE_LIMIT: {detail}", status_code=429, retry_after=retry_after)

        if response.status_code >= 500:
            raise TransientRemoteError(
                f"Shopify API error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code
            )

        if response.status_code >= 400:
            raise PermanentRemoteError(
                f"Shopify API error: {response.status_code} - {response.text[:500]}",
                status_code=response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            raise TransientRemoteError(f"Shopify returned a non-JSON response ({response.status_code})")

        if data.get('errors'):
            self._raise_graphql_errors(data['errors'])

        self._log_query_cost(data.get('extensions'))
        return data.get('data') or {}

    @staticmethod
    def _raise_graphql_errors(errors: Any) -> None:
        """Top-level GraphQL errors: throttling is a rate limit, the rest is retried"""
        error_list = errors if isinstance(errors, list) else [errors]
        for error in error_list:
            if isinstance(error, dict):
                code = (error.get('extensions') or {}).get('code', '')
                if code == 'THROTTLED':
                    raise RateLimitError(f"RATE_LIMIT: {error.get('message', 'Throttled')}")
                message = str(error.get('message', ''))
            else:
                message = str(error)
            if any(marker in message for marker in RATE_LIMIT_MARKERS):
                raise RateLimitError(f"RATE_LIMIT: {message}")

        raise TransientRemoteError(f"Shopify GraphQL errors: {errors}")

    @staticmethod
    def _raise_user_errors(operation: str, result: Dict) -> Dict:
        """Return the mutation payload, raising PermanentRemoteError on userErrors"""
        payload = result.get(operation) or {}
        user_errors = payload.get('userErrors') or []
        if user_errors:
            raise PermanentRemoteError(f"{operation} failed: {user_errors}")
        return payload

    def _log_api_usage(self, response: httpx.Response) -> None:
        call_limit = response.headers.get('X-Shopify-Shop-Api-Call-Limit')
        if not call_limit or '/' not in call_limit:
            return
        try:
            current, maximum = (float(part) for part in call_limit.split('/', 1))
        except ValueError:
            return
        if maximum and (current / maximum) * 100 > API_USAGE_WARNING_PERCENT:
            logger.warning(f"High Shopify API usage on {self.domain}: {call_limit}")

    def _log_query_cost(self, extensions: Optional[Dict]) -> None:
        throttle = ((extensions or {}).get('cost') or {}).get('throttleStatus') or {}
        available = throttle.get('currentlyAvailable')
        maximum = throttle.get('maximumAvailable')
        if available is None or not maximum:
            return
        used_percent = (1 - available / maximum) * 100
        if used_percent > API_USAGE_WARNING_PERCENT:
            logger.warning(
                f"High Shopify API usage on {self.domain}: {used_percent:.1f}% of query cost bucket used"
            )

    # =========================================================================
    # Operations
    # =========================================================================

    async def create_product(self, item: InventoryItem) -> RemoteProductRefs:
        """
        Create a single-variant product for an inventory item

        Returns:
            RemoteProductRefs with product, variant and inventory item GIDs
        """
        product_input = build_product_input(item)
        logger.info(f"Creating Shopify product: {product_input['title']} ({item.sku})")

        result = await self._execute_query(PRODUCT_CREATE_MUTATION, {'input': product_input})
        payload = self._raise_user_errors('productCreate', result)

        product = payload.get('product')
        if not product or not product.get('id'):
            raise TransientRemoteError("productCreate returned no product")

        edges = (product.get('variants') or {}).get('edges') or []
        variant = edges[0].get('node', {}) if edges else {}

        return RemoteProductRefs(
            product_id=product['id'],
            variant_id=variant.get('id'),
            inventory_item_id=(variant.get('inventoryItem') or {}).get('id')
        )

    async def set_quantity(self, inventory_item_id: str, location_id: str, quantity: int) -> None:
        """Set absolute on-hand quantity of an inventory item at a location"""
        variables = {
            'input': {
                'reason': 'correction',
                'setQuantities': [{
                    'inventoryItemId': inventory_item_id,
                    'locationId': location_gid(location_id),
                    'quantity': quantity
                }]
            }
        }

        logger.info(f"Setting inventory: {quantity} units at {location_gid(location_id)}")
        result = await self._execute_query(SET_ON_HAND_MUTATION, variables)
        self._raise_user_errors('inventorySetOnHandQuantities', result)

    async def update_product(self, item: InventoryItem) -> RemoteProductRefs:
        """
        Push local title, price and quantity to an already linked product

        Quantity is always written here (including 0), since the remote
        value may have drifted.
        """
        if not item.is_linked:
            raise PermanentRemoteError(f"Item {item.id} is not linked to a Shopify product")

        result = await self._execute_query(PRODUCT_UPDATE_MUTATION, {
            'input': {'id': item.shopify_product_id, 'title': item.product_title()}
        })
        self._raise_user_errors('productUpdate', result)

        if item.price is not None:
            result = await self._execute_query(VARIANTS_BULK_UPDATE_MUTATION, {
                'productId': item.shopify_product_id,
                'variants': [{'id': item.shopify_variant_id, 'price': f"{item.price:.2f}"}]
            })
            self._raise_user_errors('productVariantsBulkUpdate', result)

        if item.shopify_inventory_item_id and item.location_id:
            await self.set_quantity(item.shopify_inventory_item_id, item.location_id, max(item.quantity, 0))

        return RemoteProductRefs(
            product_id=item.shopify_product_id,
            variant_id=item.shopify_variant_id,
            inventory_item_id=item.shopify_inventory_item_id
        )

    async def delete_product(self, product_id: str) -> bool:
        """
        Delete a product

        Returns:
            True if deleted, False if the product was already gone
        """
        logger.info(f"Deleting Shopify product {product_id}")
        result = await self._execute_query(PRODUCT_DELETE_MUTATION, {'input': {'id': product_id}})

        user_errors = (result.get('productDelete') or {}).get('userErrors') or []
        if user_errors and all(_is_missing_product_error(e) for e in user_errors):
            logger.info(f"Shopify product {product_id} does not exist, nothing to delete")
            return False

        self._raise_user_errors('productDelete', result)
        return True

    async def get_product(self, product_id: str) -> Optional[RemoteProduct]:
        """
        Read a product and its variants

        Returns:
            RemoteProduct, or None when the product no longer exists
        """
        result = await self._execute_query(PRODUCT_QUERY, {'id': product_id})
        product = result.get('product')
        if not product:
            return None

        variants: List[RemoteVariant] = []
        for edge in (product.get('variants') or {}).get('edges', []):
            node = edge.get('node') or {}
            variants.append(RemoteVariant(
                id=node['id'],
                sku=node.get('sku'),
                price=Decimal(str(node.get('price') or '0')),
                inventory_quantity=node.get('inventoryQuantity') or 0,
                inventory_item_id=(node.get('inventoryItem') or {}).get('id')
            ))

        return RemoteProduct(id=product['id'], title=product.get('title') or '', variants=variants)


def _is_missing_product_error(error: Dict) -> bool:
    message = str(error.get('message') or '').lower()
    return 'does not exist' in message or 'not found' in message


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
