"""
FastAPI dependencies for database sessions, blob storage and services.

Authentication is out of scope; callers may identify themselves with the
``X-Actor-ID`` header, which is recorded as the uploader of attachments and
bound to every log line of the request.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import get_settings
from src.core.logging import get_logger, set_actor_id
from src.database.connection import get_db
from src.services.demos.service import DemoService
from src.services.items.projector import ItemStateProjector
from src.services.items.service import InventoryService
from src.services.orders.rollback import RollbackCoordinator
from src.services.orders.service import OrderLifecycleEngine
from src.services.storage.blob_store import BlobStore, create_blob_store

logger = get_logger(__name__)


@lru_cache
def get_blob_store() -> BlobStore:
    """Process-wide blob store built from settings."""
    return create_blob_store(get_settings())


async def get_actor(
    x_actor_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """Bind the caller's identity to the logging context."""
    actor = (x_actor_id or "").strip() or None
    set_actor_id(actor)
    return actor


DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store)]
Actor = Annotated[Optional[str], Depends(get_actor)]


def get_inventory_service(db: DatabaseSession) -> InventoryService:
    return InventoryService(db)


def get_projector(db: DatabaseSession) -> ItemStateProjector:
    return ItemStateProjector(db, get_settings())


def get_lifecycle_engine(
    db: DatabaseSession, blob_store: BlobStoreDep
) -> OrderLifecycleEngine:
    return OrderLifecycleEngine(db, blob_store, get_settings())


def get_rollback_coordinator(
    db: DatabaseSession, blob_store: BlobStoreDep
) -> RollbackCoordinator:
    return RollbackCoordinator(db, blob_store, get_settings())


def get_demo_service(db: DatabaseSession) -> DemoService:
    return DemoService(db)


Inventory = Annotated[InventoryService, Depends(get_inventory_service)]
Projector = Annotated[ItemStateProjector, Depends(get_projector)]
LifecycleEngine = Annotated[OrderLifecycleEngine, Depends(get_lifecycle_engine)]
Rollback = Annotated[RollbackCoordinator, Depends(get_rollback_coordinator)]
Demos = Annotated[DemoService, Depends(get_demo_service)]
