"""
Async MySQL client for OpenCart store databases.
"""

import asyncio
import logging
import os
import re
import ssl
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiomysql

from ..config import Settings
from ..db.models import ConnectionParams

logger = logging.getLogger(__name__)

# MySQL client/server error codes that mean "could not reach or log in"
CONNECTION_ERROR_CODES = {1045, 1049, 2002, 2003, 2005, 2006, 2013, 2026, 2055}

PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_]*$")


class OpenCartClientError(Exception):
    """Base exception for store database errors."""

    def __init__(self, message: str, store_name: Optional[str] = None, sku: Optional[str] = None):
        super().__init__(message)
        self.store_name = store_name
        self.sku = sku


class StoreConnectionError(OpenCartClientError):
    """Credentials, network or TLS failure, or no connection configured."""
    pass


class StoreQueryError(OpenCartClientError):
    """A query failed on an open connection."""
    pass


class ProductNotFoundError(OpenCartClientError):
    """No product with the requested SKU exists in the store."""
    pass


class BackupError(OpenCartClientError):
    """Backup could not be created."""
    pass


def validate_prefix(prefix: str) -> str:
    """Table prefixes are interpolated into SQL, so only word characters are allowed."""
    if not PREFIX_PATTERN.match(prefix or ""):
        raise ValueError(f"Invalid table prefix: {prefix!r}")
    return prefix or ""


def build_ssl_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """
    Build the TLS context for store connections.

    TLS is used whenever a CA certificate is present. A client certificate
    and key are added for mutual TLS when both files exist. A missing CA
    certificate falls back to an unencrypted connection with a warning.

    Returns:
        SSL context, or None for an unencrypted connection
    """
    if not settings.db_use_ssl:
        logger.info("TLS disabled for store connections (DB_USE_SSL=false)")
        return None

    if not os.path.exists(settings.ssl_ca_path):
        logger.warning(
            f"TLS is enabled but no CA certificate found at {settings.ssl_ca_path}; "
            f"store connections will not be encrypted"
        )
        return None

    context = ssl.create_default_context(cafile=settings.ssl_ca_path)

    if os.path.exists(settings.ssl_cert_path) and os.path.exists(settings.ssl_key_path):
        context.load_cert_chain(settings.ssl_cert_path, settings.ssl_key_path)
        logger.debug("Using mutual TLS for store connections")

    return context


class OpenCartClient:
    """
    Pooled connection to one store's OpenCart database.

    Handles pool creation, TLS, transactions and error translation.
    """

    def __init__(
        self,
        params: ConnectionParams,
        settings: Settings,
        store_name: Optional[str] = None,
    ):
        """
        Initialize the client. The pool is created on first use.

        Args:
            params: Host, credentials and table prefix
            settings: Application settings (pool size, timeouts, TLS files)
            store_name: Store name used in log and error messages
        """
        self.params = params
        self.settings = settings
        self.prefix = validate_prefix(params.prefix)
        self.store_name = store_name or f"{params.host}/{params.database}"

        self._pool: Optional[aiomysql.Pool] = None
        self._pool_lock = asyncio.Lock()

    def sql(self, template: str, **kwargs: str) -> str:
        """Fill the table prefix into a query template."""
        return template.format(p=self.prefix, **kwargs)

    async def _get_pool(self) -> aiomysql.Pool:
        """Get or create the connection pool."""
        async with self._pool_lock:
            if self._pool is None or self._pool.closed:
                try:
                    self._pool = await aiomysql.create_pool(
                        host=self.params.host,
                        port=int(self.params.port),
                        user=self.params.username,
                        password=self.params.password,
                        db=self.params.database,
                        minsize=1,
                        maxsize=self.settings.db_pool_size,
                        connect_timeout=self.settings.db_connect_timeout,
                        ssl=build_ssl_context(self.settings),
                        autocommit=False,
                        charset="utf8mb4",
                    )
                except Exception as e:
                    raise StoreConnectionError(
                        f"Database connection failed for {self.store_name}: {e}",
                        store_name=self.store_name,
                    ) from e
            return self._pool

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    def _translate(self, error: Exception, sku: Optional[str] = None) -> OpenCartClientError:
        """Convert a driver exception into a typed store error."""
        if isinstance(error, OpenCartClientError):
            return error

        code = error.args[0] if error.args and isinstance(error.args[0], int) else None
        if isinstance(error, (OSError, asyncio.TimeoutError)) or code in CONNECTION_ERROR_CODES:
            return StoreConnectionError(
                f"Lost connection to {self.store_name}: {error}",
                store_name=self.store_name, sku=sku,
            )
        return StoreQueryError(
            f"Query failed on {self.store_name}: {error}",
            store_name=self.store_name, sku=sku,
        )

    @asynccontextmanager
    async def transaction(self, sku: Optional[str] = None) -> AsyncIterator[aiomysql.DictCursor]:
        """
        Run statements on one pooled connection inside a transaction.

        Commits when the block exits normally, rolls back otherwise.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                await conn.begin()
                try:
                    async with conn.cursor(aiomysql.DictCursor) as cursor:
                        yield cursor
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise
        except OpenCartClientError:
            raise
        except (aiomysql.Error, OSError, asyncio.TimeoutError) as e:
            raise self._translate(e, sku) from e

    async def fetch_all(self, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a read query and return all rows as dicts."""
        async with self.transaction() as cursor:
            await cursor.execute(query, params)
            return list(await cursor.fetchall())

    async def fetch_one(self, query: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        """Run a read query and return the first row."""
        rows = await self.fetch_all(query, params)
        return rows[0] if rows else None

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()
