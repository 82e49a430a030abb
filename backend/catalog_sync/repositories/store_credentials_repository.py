"""
Store Credentials Repository

Resolves Shopify domain + Admin API token for a store key.
Domains live in shopify_stores, tokens in system_settings under
SHOPIFY_<STORE_KEY>_ACCESS_TOKEN.
"""
from catalog_sync.core.database import get_db_connection_dict
from catalog_sync.core.exceptions import NotFoundError
from catalog_sync.domain.remote import StoreCredentials


class StoreCredentialsRepository:

    def get_credentials(self, store_key: str) -> StoreCredentials:
        """
        Raises:
            NotFoundError: store or its access token is not configured
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT domain
                FROM shopify_stores
                WHERE key = %s
            """, (store_key,))
            store = cursor.fetchone()
            if not store:
                raise NotFoundError(f"Store not found: {store_key}")

            cursor.execute("""
                SELECT key_value
                FROM system_settings
                WHERE key_name = %s
            """, (f"SHOPIFY_{store_key.upper()}_ACCESS_TOKEN",))
            token = cursor.fetchone()
            if not token or not token['key_value']:
                raise NotFoundError(f"Access token not found for store: {store_key}")

            return StoreCredentials(
                store_key=store_key,
                domain=store['domain'],
                access_token=token['key_value']
            )
        finally:
            cursor.close()
            conn.close()
