"""
Audit Log Repository - append-only system_logs writer
"""
import json
from typing import Any, Dict, Optional

from psycopg2.extras import Json

from catalog_sync.core.database import get_db_connection_dict


def _dumps(value) -> str:
    # context may carry datetimes / Decimals
    return json.dumps(value, default=str)


class AuditLogRepository:
    """Append facts to system_logs; rows are never updated"""

    def append(self, level: str, message: str, context: Optional[Dict[str, Any]] = None,
               source: str = "catalog_sync") -> None:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO system_logs (level, message, context, source, created_at)
                VALUES (%s, %s, %s, %s, NOW())
            """, (level.upper(), message, Json(context or {}, dumps=_dumps), source))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()
            conn.close()
