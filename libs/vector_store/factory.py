"""Vector store factory for creating different implementations.

Centralizes creation of concrete ``VectorStore`` backends so callers don't
depend on implementation details. New stores can be added without changing
call sites.
"""

from enum import Enum
from typing import Any, Dict

import structlog

from libs.common.config import BaseConfig
from .base import VectorStore
from .memory import InMemoryVectorStore
from .pgvector import PgVectorStore

logger = structlog.get_logger("vector_store.factory")


class VectorStoreType(Enum):
    """Supported vector store types."""
    PGVECTOR = "pgvector"
    MEMORY = "memory"


class VectorStoreFactory:
    """Factory for creating vector store instances."""

    @staticmethod
    def create(store_type: VectorStoreType, config: Dict[str, Any]) -> VectorStore:
        """Create a vector store instance.

        Parameters
        - store_type: A ``VectorStoreType`` enum value
        - config: Backend-specific parameters (e.g., DSN for pgvector)
        """
        if store_type == VectorStoreType.PGVECTOR:
            dsn = config.get("dsn")
            if not dsn:
                raise ValueError("PgVector requires 'dsn' in config")

            return PgVectorStore(
                dsn=dsn,
                pool_size=config.get("pool_size", 10),
                max_queries=config.get("max_queries", 50000),
                command_timeout=config.get("command_timeout", 60),
                vector_dimension=config.get("vector_dimension"),
            )

        elif store_type == VectorStoreType.MEMORY:
            return InMemoryVectorStore(vector_dimension=config.get("vector_dimension"))

        else:
            raise ValueError(f"Unsupported vector store type: {store_type}")

    @staticmethod
    def create_from_config(config: Dict[str, Any]) -> VectorStore:
        """Create vector store from configuration dictionary.

        Expects a ``type`` key and any implementation-specific fields.
        """
        store_type_str = config.get("type", "pgvector")

        try:
            store_type = VectorStoreType(store_type_str)
        except ValueError:
            raise ValueError(f"Unsupported vector store type: {store_type_str}")

        return VectorStoreFactory.create(store_type, config)


def create_vector_store(store_type: str, config: Dict[str, Any]) -> VectorStore:
    """Convenience function to create a vector store."""
    try:
        store_type_enum = VectorStoreType(store_type)
    except ValueError:
        raise ValueError(f"Unsupported vector store type: {store_type}")
    return VectorStoreFactory.create(store_type_enum, config)


def create_vector_store_from_settings(config: BaseConfig) -> VectorStore:
    """Create the vector store described by typed service settings."""
    store = create_vector_store(
        config.ml_vector_backend,
        {
            "dsn": config.ml_vector_db_dsn,
            "pool_size": config.ml_vector_pool_size,
            "max_queries": config.ml_vector_max_queries,
            "command_timeout": config.ml_vector_command_timeout,
            "vector_dimension": config.ml_vector_dimension,
        },
    )
    logger.info("Vector store created", backend=config.ml_vector_backend)
    return store
