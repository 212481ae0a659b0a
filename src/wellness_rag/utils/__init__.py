"""
Utilities: configuration and logging.
"""

from wellness_rag.utils.config import (
    CacheConfig,
    ChunkingConfig,
    Config,
    EmbeddingModelConfig,
    ProviderConfig,
    RAGConfig,
    StorageConfig,
    VectorSearchConfig,
    load_config,
)
from wellness_rag.utils.logging import get_logger, set_log_level

__all__ = [
    "Config",
    "RAGConfig",
    "EmbeddingModelConfig",
    "VectorSearchConfig",
    "CacheConfig",
    "ChunkingConfig",
    "ProviderConfig",
    "StorageConfig",
    "load_config",
    "get_logger",
    "set_log_level",
]
