"""Database connection and management utilities."""

import logging
from typing import Optional, Dict, Any, List
import aiomysql
from config import config

logger = logging.getLogger(__name__)

class DatabaseManager:
    """Manages database connections and read queries.

    The notification pipeline never writes order fields; the only write is
    flagging change-log rows as processed.
    """

    def __init__(self, settings=config):
        self.pool: Optional[aiomysql.Pool] = None
        self.orders_table = settings.ORDERS_TABLE
        self._connection_params = {
            'host': settings.DB_HOST,
            'port': settings.DB_PORT,
            'user': settings.DB_USER,
            'password': settings.DB_PASSWORD,
            'db': settings.DB_NAME,
            'charset': 'utf8mb4',
            'autocommit': True
        }

    async def initialize(self) -> None:
        """Initialize the database connection pool."""
        try:
            self.pool = await aiomysql.create_pool(
                minsize=2,
                maxsize=10,
                **self._connection_params
            )
            logger.info("Database connection pool initialized")

            # Test connection
            await self.health_check()

        except Exception as e:
            logger.error(f"Failed to initialize database pool: {e}")
            raise

    async def close(self) -> None:
        """Close the database connection pool."""
        if self.pool:
            self.pool.close()
            await self.pool.wait_closed()
            logger.info("Database connection pool closed")

    async def health_check(self) -> bool:
        """Check if database connection is healthy."""
        try:
            async with self.pool.acquire() as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute("SELECT 1")
                    result = await cursor.fetchone()
                    return result[0] == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def execute_query(self, query: str, params: tuple = None) -> List[Dict[str, Any]]:
        """Execute a SELECT query and return results."""
        async with self.pool.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                await cursor.execute(query, params)
                return await cursor.fetchall()

    async def execute_update(self, query: str, params: tuple = None) -> int:
        """Execute an INSERT/UPDATE/DELETE query and return affected rows."""
        async with self.pool.acquire() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute(query, params)
                return cursor.rowcount

    async def get_unprocessed_changes(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Fetch unprocessed changes from the change log, oldest first."""
        query = """
        SELECT id, table_name, order_id, operation_type, old_data, new_data, changed_at
        FROM order_changes
        WHERE processed = FALSE
        ORDER BY changed_at ASC, id ASC
        LIMIT %s
        """
        return await self.execute_query(query, (limit,))

    async def mark_changes_processed(self, change_ids: List[int]) -> None:
        """Mark changes as processed."""
        if not change_ids:
            return

        placeholders = ','.join(['%s'] * len(change_ids))
        query = f"UPDATE order_changes SET processed = TRUE WHERE id IN ({placeholders})"
        await self.execute_update(query, tuple(change_ids))

        logger.debug(f"Marked {len(change_ids)} changes as processed")

    async def count_recent_changes(self) -> int:
        """Number of change-log rows written in the last hour."""
        rows = await self.execute_query(
            "SELECT COUNT(*) AS count FROM order_changes WHERE changed_at > DATE_SUB(NOW(), INTERVAL 1 HOUR)"
        )
        return rows[0]["count"] if rows else 0

    async def get_order_details(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Get an order with its customer contact and line items."""
        query = f"""
        SELECT o.*, p.name AS customer_name, p.phone AS customer_phone, p.email AS customer_email
        FROM {self.orders_table} o
        LEFT JOIN profiles p ON p.id = COALESCE(o.customer_profile_id, o.profile_id)
        WHERE o.id = %s
        """
        results = await self.execute_query(query, (order_id,))
        if not results:
            return None
        order = dict(results[0])
        order["items"] = await self.execute_query(
            "SELECT product_name, quantity, price FROM order_items WHERE order_id = %s ORDER BY id",
            (order_id,)
        )
        return order

    async def get_recent_orders(self, limit: int, scope_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest orders first, optionally restricted to one customer profile."""
        query = f"""
        SELECT id, display_id, status, created_at, total_amount, profile_id
        FROM {self.orders_table}
        """
        params: tuple = ()
        if scope_id:
            query += " WHERE customer_profile_id = %s"
            params = (scope_id,)
        query += " ORDER BY created_at DESC LIMIT %s"
        return await self.execute_query(query, params + (limit,))
