"""
SQLite database implementation.
Simple and direct - no abstraction layers.
"""

import json
import os
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiosqlite

from .models import (
    BackupRecord, DbConnection, DbConnectionUpsert, Store, UpdateDetail,
    UpdateJob, UpdateOptions, UpdateStatus
)


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp, dropping timezone info to avoid comparison issues."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.replace(tzinfo=None)
    return parsed


def _price(value: Optional[Decimal]) -> Optional[str]:
    """Prices are stored as TEXT to keep Decimal precision."""
    return None if value is None else str(value)


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return None if value is None else Decimal(value)


def _tier_json(prices: Dict[str, Optional[Decimal]]) -> str:
    return json.dumps({tier: _price(price) for tier, price in prices.items()})


def _tier_dict(raw: Optional[str]) -> Dict[str, Optional[Decimal]]:
    if not raw:
        return {}
    return {tier: _decimal(price) for tier, price in json.loads(raw).items()}


class SQLiteDatabase:
    """SQLite database for stores, connections and update history."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            if self.db_path != ":memory:":
                os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
            self._connection = await aiosqlite.connect(self.db_path)
            self._connection.row_factory = aiosqlite.Row
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """Create database tables."""
        conn = await self._get_connection()

        await conn.executescript("""
            CREATE TABLE IF NOT EXISTS stores (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                url TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS db_connections (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                store_id INTEGER NOT NULL UNIQUE,
                host TEXT NOT NULL,
                port INTEGER NOT NULL DEFAULT 3306,
                database TEXT NOT NULL,
                username TEXT NOT NULL,
                password TEXT NOT NULL,
                prefix TEXT NOT NULL DEFAULT 'oc_',
                is_active INTEGER NOT NULL DEFAULT 1,
                last_connected TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (store_id) REFERENCES stores(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS store_tier_groups (
                store_id INTEGER NOT NULL,
                tier TEXT NOT NULL,
                customer_group_id INTEGER NOT NULL,
                PRIMARY KEY (store_id, tier),
                FOREIGN KEY (store_id) REFERENCES stores(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS updates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                filename TEXT NOT NULL,
                row_count INTEGER NOT NULL,
                target_store_ids TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                options TEXT NOT NULL,
                created_at TEXT NOT NULL,
                completed_at TEXT
            );

            -- History tables keep store_id after the store is deleted
            CREATE TABLE IF NOT EXISTS update_details (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                update_id INTEGER NOT NULL,
                store_id INTEGER NOT NULL,
                sku TEXT NOT NULL,
                product_id INTEGER,
                old_regular_price TEXT,
                new_regular_price TEXT,
                old_tier_prices TEXT,
                new_tier_prices TEXT,
                old_quantity INTEGER,
                new_quantity INTEGER,
                success INTEGER NOT NULL DEFAULT 1,
                error_message TEXT,
                created_at TEXT NOT NULL,
                FOREIGN KEY (update_id) REFERENCES updates(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS backups (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                update_id INTEGER NOT NULL,
                store_id INTEGER NOT NULL,
                store_name TEXT NOT NULL DEFAULT '',
                name TEXT NOT NULL,
                product_count INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                FOREIGN KEY (update_id) REFERENCES updates(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_update_details_update_id ON update_details(update_id);
            CREATE INDEX IF NOT EXISTS idx_update_details_store_id ON update_details(store_id);
            CREATE INDEX IF NOT EXISTS idx_updates_created_at ON updates(created_at DESC);
            CREATE INDEX IF NOT EXISTS idx_backups_update_id ON backups(update_id);
        """)
        await conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # ===== Helper Methods =====

    def _row_to_store(self, row: aiosqlite.Row) -> Store:
        return Store(
            id=row["id"],
            name=row["name"],
            url=row["url"],
            created_at=_parse_datetime(row["created_at"]),
        )

    def _row_to_connection(self, row: aiosqlite.Row) -> DbConnection:
        return DbConnection(
            id=row["id"],
            store_id=row["store_id"],
            host=row["host"],
            port=row["port"],
            database=row["database"],
            username=row["username"],
            password=row["password"],
            prefix=row["prefix"],
            is_active=bool(row["is_active"]),
            last_connected=_parse_datetime(row["last_connected"]),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
        )

    def _row_to_update(self, row: aiosqlite.Row) -> UpdateJob:
        return UpdateJob(
            id=row["id"],
            filename=row["filename"],
            row_count=row["row_count"],
            target_store_ids=json.loads(row["target_store_ids"]),
            status=UpdateStatus(row["status"]),
            options=UpdateOptions.model_validate_json(row["options"]),
            created_at=_parse_datetime(row["created_at"]),
            completed_at=_parse_datetime(row["completed_at"]),
        )

    def _row_to_detail(self, row: aiosqlite.Row) -> UpdateDetail:
        return UpdateDetail(
            id=row["id"],
            update_id=row["update_id"],
            store_id=row["store_id"],
            sku=row["sku"],
            product_id=row["product_id"],
            old_regular_price=_decimal(row["old_regular_price"]),
            new_regular_price=_decimal(row["new_regular_price"]),
            old_tier_prices=_tier_dict(row["old_tier_prices"]),
            new_tier_prices=_tier_dict(row["new_tier_prices"]),
            old_quantity=row["old_quantity"],
            new_quantity=row["new_quantity"],
            success=bool(row["success"]),
            error_message=row["error_message"],
            created_at=_parse_datetime(row["created_at"]),
        )

    def _row_to_backup(self, row: aiosqlite.Row) -> BackupRecord:
        return BackupRecord(
            id=row["id"],
            update_id=row["update_id"],
            store_id=row["store_id"],
            store_name=row["store_name"] or "",
            name=row["name"],
            product_count=row["product_count"],
            created_at=_parse_datetime(row["created_at"]),
        )

    # ===== Store Operations =====

    async def get_stores(self) -> List[Store]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM stores ORDER BY name")
        rows = await cursor.fetchall()
        return [self._row_to_store(row) for row in rows]

    async def get_store(self, store_id: int) -> Optional[Store]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM stores WHERE id = ?", (store_id,))
        row = await cursor.fetchone()
        return self._row_to_store(row) if row else None

    async def get_stores_by_ids(self, store_ids: List[int]) -> Dict[int, Store]:
        if not store_ids:
            return {}
        conn = await self._get_connection()
        placeholders = ", ".join("?" for _ in store_ids)
        cursor = await conn.execute(
            f"SELECT * FROM stores WHERE id IN ({placeholders})", list(store_ids)
        )
        rows = await cursor.fetchall()
        return {row["id"]: self._row_to_store(row) for row in rows}

    async def create_store(self, name: str, url: str) -> Store:
        conn = await self._get_connection()
        created_at = datetime.utcnow()
        cursor = await conn.execute(
            "INSERT INTO stores (name, url, created_at) VALUES (?, ?, ?)",
            (name, url, created_at.isoformat())
        )
        await conn.commit()
        return Store(id=cursor.lastrowid, name=name, url=url, created_at=created_at)

    async def delete_store(self, store_id: int) -> bool:
        conn = await self._get_connection()
        cursor = await conn.execute("DELETE FROM stores WHERE id = ?", (store_id,))
        await conn.commit()
        return cursor.rowcount > 0

    # ===== Connection Operations =====

    async def get_connection(self, store_id: int) -> Optional[DbConnection]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT * FROM db_connections WHERE store_id = ?", (store_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_connection(row) if row else None

    async def get_connections(self) -> List[DbConnection]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM db_connections ORDER BY store_id")
        rows = await cursor.fetchall()
        return [self._row_to_connection(row) for row in rows]

    async def save_connection(self, store_id: int, data: DbConnectionUpsert) -> DbConnection:
        """Create or replace the store's connection (one per store)."""
        conn = await self._get_connection()
        now = datetime.utcnow().isoformat()
        await conn.execute(
            """
            INSERT INTO db_connections (store_id, host, port, database, username, password,
                                        prefix, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(store_id) DO UPDATE SET
                host = excluded.host,
                port = excluded.port,
                database = excluded.database,
                username = excluded.username,
                password = excluded.password,
                prefix = excluded.prefix,
                is_active = excluded.is_active,
                updated_at = excluded.updated_at
            """,
            (
                store_id, data.host, data.port, data.database, data.username,
                data.password, data.prefix, int(data.is_active), now, now
            )
        )
        await conn.commit()
        return await self.get_connection(store_id)

    async def mark_connected(self, store_id: int) -> None:
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE db_connections SET last_connected = ? WHERE store_id = ?",
            (datetime.utcnow().isoformat(), store_id)
        )
        await conn.commit()

    # ===== Tier Group Operations =====

    async def get_tier_groups(self, store_id: int) -> Dict[str, int]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT tier, customer_group_id FROM store_tier_groups WHERE store_id = ?",
            (store_id,)
        )
        rows = await cursor.fetchall()
        return {row["tier"]: row["customer_group_id"] for row in rows}

    async def set_tier_groups(self, store_id: int, groups: Dict[str, int]) -> Dict[str, int]:
        conn = await self._get_connection()
        await conn.execute("DELETE FROM store_tier_groups WHERE store_id = ?", (store_id,))
        await conn.executemany(
            "INSERT INTO store_tier_groups (store_id, tier, customer_group_id) VALUES (?, ?, ?)",
            [(store_id, tier, group_id) for tier, group_id in groups.items()]
        )
        await conn.commit()
        return await self.get_tier_groups(store_id)

    # ===== Update Operations =====

    async def create_update(
        self,
        filename: str,
        row_count: int,
        target_store_ids: List[int],
        options: UpdateOptions
    ) -> UpdateJob:
        conn = await self._get_connection()
        created_at = datetime.utcnow()
        cursor = await conn.execute(
            """
            INSERT INTO updates (filename, row_count, target_store_ids, status, options, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                filename, row_count, json.dumps(list(target_store_ids)),
                UpdateStatus.PENDING.value, options.model_dump_json(), created_at.isoformat()
            )
        )
        await conn.commit()
        return UpdateJob(
            id=cursor.lastrowid,
            filename=filename,
            row_count=row_count,
            target_store_ids=list(target_store_ids),
            options=options,
            created_at=created_at,
        )

    async def get_update(self, update_id: int) -> Optional[UpdateJob]:
        conn = await self._get_connection()
        cursor = await conn.execute("SELECT * FROM updates WHERE id = ?", (update_id,))
        row = await cursor.fetchone()
        return self._row_to_update(row) if row else None

    async def get_updates(
        self,
        status: Optional[UpdateStatus] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[UpdateJob]:
        conn = await self._get_connection()

        query = "SELECT * FROM updates WHERE 1=1"
        params: List[Any] = []

        if status:
            query += " AND status = ?"
            params.append(status.value)

        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_update(row) for row in rows]

    async def get_recent_updates(self, limit: int = 5) -> List[UpdateJob]:
        return await self.get_updates(limit=limit)

    async def complete_update(self, update_id: int, status: UpdateStatus) -> Optional[UpdateJob]:
        conn = await self._get_connection()
        await conn.execute(
            "UPDATE updates SET status = ?, completed_at = ? WHERE id = ?",
            (status.value, datetime.utcnow().isoformat(), update_id)
        )
        await conn.commit()
        return await self.get_update(update_id)

    async def fail_orphaned_updates(self) -> int:
        """Mark updates left pending by a previous process as failed."""
        conn = await self._get_connection()
        cursor = await conn.execute(
            "UPDATE updates SET status = ?, completed_at = ? WHERE status = ?",
            (UpdateStatus.FAILED.value, datetime.utcnow().isoformat(), UpdateStatus.PENDING.value)
        )
        await conn.commit()
        return cursor.rowcount

    # ===== Update Detail Operations =====

    async def create_update_detail(self, detail: UpdateDetail) -> UpdateDetail:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO update_details (update_id, store_id, sku, product_id,
                                        old_regular_price, new_regular_price,
                                        old_tier_prices, new_tier_prices,
                                        old_quantity, new_quantity,
                                        success, error_message, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                detail.update_id, detail.store_id, detail.sku, detail.product_id,
                _price(detail.old_regular_price), _price(detail.new_regular_price),
                _tier_json(detail.old_tier_prices), _tier_json(detail.new_tier_prices),
                detail.old_quantity, detail.new_quantity,
                int(detail.success), detail.error_message, detail.created_at.isoformat()
            )
        )
        await conn.commit()
        return detail.model_copy(update={"id": cursor.lastrowid})

    async def get_update_details(
        self,
        update_id: int,
        store_id: Optional[int] = None,
        success: Optional[bool] = None
    ) -> List[UpdateDetail]:
        conn = await self._get_connection()

        query = "SELECT * FROM update_details WHERE update_id = ?"
        params: List[Any] = [update_id]

        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)

        if success is not None:
            query += " AND success = ?"
            params.append(int(success))

        query += " ORDER BY id"
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_detail(row) for row in rows]

    async def count_update_details(self, update_id: int) -> Dict[str, int]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT COUNT(*) AS total, COALESCE(SUM(success = 0), 0) AS failed
            FROM update_details WHERE update_id = ?
            """,
            (update_id,)
        )
        row = await cursor.fetchone()
        return {"total": row["total"], "failed": row["failed"]}

    # ===== Backup Operations =====

    async def create_backup_record(self, record: BackupRecord) -> BackupRecord:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            INSERT INTO backups (update_id, store_id, store_name, name, product_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.update_id, record.store_id, record.store_name, record.name,
                record.product_count, record.created_at.isoformat()
            )
        )
        await conn.commit()
        return record.model_copy(update={"id": cursor.lastrowid})

    async def get_backup_records(self, update_id: int) -> List[BackupRecord]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            """
            SELECT b.id, b.update_id, b.store_id, b.name, b.product_count, b.created_at,
                   COALESCE(s.name, b.store_name) AS store_name
            FROM backups b
            LEFT JOIN stores s ON s.id = b.store_id
            WHERE b.update_id = ? ORDER BY b.id
            """,
            (update_id,)
        )
        rows = await cursor.fetchall()
        return [self._row_to_backup(row) for row in rows]

    # ===== Dashboard =====

    async def get_stats(self, recent_days: int = 7) -> Dict[str, Any]:
        conn = await self._get_connection()
        since = (datetime.utcnow() - timedelta(days=recent_days)).isoformat()

        cursor = await conn.execute("SELECT COUNT(*) AS n FROM stores")
        total_stores = (await cursor.fetchone())["n"]

        cursor = await conn.execute(
            "SELECT COUNT(*) AS n FROM db_connections WHERE is_active = 1"
        )
        connected_stores = (await cursor.fetchone())["n"]

        cursor = await conn.execute(
            "SELECT COUNT(*) AS n FROM updates WHERE created_at >= ?", (since,)
        )
        recent_updates = (await cursor.fetchone())["n"]

        cursor = await conn.execute(
            "SELECT COUNT(DISTINCT sku) AS n FROM update_details WHERE success = 1"
        )
        total_products = (await cursor.fetchone())["n"]

        cursor = await conn.execute("SELECT MAX(created_at) AS last FROM updates")
        last_update = _parse_datetime((await cursor.fetchone())["last"])

        return {
            "total_products": total_products,
            "recent_updates": recent_updates,
            "connected_stores": connected_stores,
            "total_stores": total_stores,
            "last_update_time": last_update,
        }
