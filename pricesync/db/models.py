"""
Pydantic models for database entities.
Store database credentials are stored directly in SQLite (plaintext).
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


# Prices are Decimal internally and plain JSON numbers on the wire
Price = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base model exposing camelCase keys in JSON while accepting both spellings."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpdateStatus(str, Enum):
    """Status of an update job."""
    PENDING = "pending"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class Store(CamelModel):
    """An OpenCart store that receives price updates."""
    id: int
    name: str
    url: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StoreCreate(CamelModel):
    """Input for creating a new store."""
    name: str
    url: str


class ConnectionParams(CamelModel):
    """Database credentials for an OpenCart store."""
    host: str
    port: int = 3306
    database: str
    username: str
    password: str
    prefix: str = "oc_"


class DbConnection(ConnectionParams):
    """Stored database connection (at most one per store)."""
    id: int
    store_id: int
    is_active: bool = True
    last_connected: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class DbConnectionUpsert(ConnectionParams):
    """Input for saving a store's connection."""
    is_active: bool = True


class UpdateOptions(CamelModel):
    """Which fields an update job writes to the stores."""
    update_regular_prices: bool = True
    update_tier_prices: Dict[str, bool] = Field(default_factory=dict)
    update_quantities: bool = True

    def tier_enabled(self, tier: str) -> bool:
        # Tiers without an explicit flag are written
        return self.update_tier_prices.get(tier, True)


class UpdateJob(CamelModel):
    """One batch synchronization run."""
    id: int
    filename: str
    row_count: int
    target_store_ids: List[int]
    status: UpdateStatus = UpdateStatus.PENDING
    options: UpdateOptions = Field(default_factory=UpdateOptions)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status != UpdateStatus.PENDING


class UpdateDetail(CamelModel):
    """Outcome of one spreadsheet row for one store."""
    id: Optional[int] = None
    update_id: int
    store_id: int
    sku: str
    product_id: Optional[int] = None
    old_regular_price: Optional[Price] = None
    new_regular_price: Optional[Price] = None
    old_tier_prices: Dict[str, Optional[Price]] = Field(default_factory=dict)
    new_tier_prices: Dict[str, Price] = Field(default_factory=dict)
    old_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    success: bool = True
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BackupRecord(CamelModel):
    """Local index entry for a backup held in a store database."""
    id: Optional[int] = None
    update_id: int
    store_id: int
    store_name: str = ""
    name: str
    product_count: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
