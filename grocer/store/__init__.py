"""
Store — persistence protocols and backends.

    from grocer import store

    stores = store.memory_stores(products=[milk])
    # or
    session_factory, engine = await store.create_database(url)
    stores = store.sqlalchemy_stores(session_factory)
"""

from __future__ import annotations

from grocer.store._protocols import (
    StoreError,
    from_store,
    ProductStore,
    PromotionStore,
    CartStore,
    OrderStore,
    AttemptState,
    Attempt,
    AttemptStore,
    Stores,
)
from grocer.store._memory import (
    MemoryProductStore,
    MemoryPromotionStore,
    MemoryCartStore,
    MemoryOrderStore,
    MemoryAttemptStore,
    memory_stores,
)
from grocer.store._sqlalchemy import (
    Base,
    SQLAlchemyProductStore,
    SQLAlchemyPromotionStore,
    SQLAlchemyCartStore,
    SQLAlchemyOrderStore,
    SQLAlchemyAttemptStore,
    create_database,
    sqlalchemy_stores,
)

__all__ = (
    "StoreError",
    "from_store",
    "ProductStore",
    "PromotionStore",
    "CartStore",
    "OrderStore",
    "AttemptState",
    "Attempt",
    "AttemptStore",
    "Stores",
    "MemoryProductStore",
    "MemoryPromotionStore",
    "MemoryCartStore",
    "MemoryOrderStore",
    "MemoryAttemptStore",
    "memory_stores",
    "Base",
    "SQLAlchemyProductStore",
    "SQLAlchemyPromotionStore",
    "SQLAlchemyCartStore",
    "SQLAlchemyOrderStore",
    "SQLAlchemyAttemptStore",
    "create_database",
    "sqlalchemy_stores",
)
