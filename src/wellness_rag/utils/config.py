"""
Configuration utilities.
"""

import json
import os
from pathlib import Path
from typing import Literal

import yaml

from pydantic import BaseModel, Field


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class EmbeddingModelConfig(BaseModel):
    """Embedding model settings."""
    name: str = "mistral-embed"
    dimensions: int = 1024
    provider: Literal["mistral", "local"] = "mistral"
    max_concurrency: int = 1


class VectorSearchConfig(BaseModel):
    """Vector search settings."""
    top_k: int = 10
    threshold: float = 0.7
    hybrid_threshold: float = 0.5


class CacheConfig(BaseModel):
    """Response cache settings."""
    enabled: bool = True
    ttl: int = 3600
    key_prefix: str = "rag:search:"


class ChunkingConfig(BaseModel):
    """Document chunking settings."""
    max_chunk_size: int = 1000
    overlap_size: int = 200


class ProviderConfig(BaseModel):
    """Completion provider settings."""
    api_key: str | None = None
    base_url: str = "https://api.mistral.ai/v1"
    model: str = "mistral-small-latest"
    max_tokens: int = 1000
    temperature: float = 0.7
    top_p: float = 0.9
    timeout: float = 60.0


class StorageConfig(BaseModel):
    """Document database and cache store locations."""
    mongodb_uri: str = "mongodb://localhost:27017/wellness-scribe"
    database: str = "wellness-scribe"
    documents_collection: str = "wellness_documents"
    contexts_collection: str = "conversation_contexts"
    redis_url: str = "redis://localhost:6379"


class RAGConfig(Config):
    """Top level configuration for the wellness RAG pipeline."""
    embedding: EmbeddingModelConfig = Field(default_factory=EmbeddingModelConfig)
    vector_search: VectorSearchConfig = Field(default_factory=VectorSearchConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    log_level: str = "INFO"

    def with_env(self) -> "RAGConfig":
        """Return a copy with values from environment variables applied."""
        config = self.model_copy(deep=True)

        api_key = os.environ.get("MISTRAL_API_KEY")
        if api_key:
            config.provider.api_key = api_key

        mongodb_uri = os.environ.get("MONGODB_URI")
        if mongodb_uri:
            config.storage.mongodb_uri = mongodb_uri

        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            config.storage.redis_url = redis_url

        log_level = os.environ.get("WELLNESS_RAG_LOG_LEVEL")
        if log_level:
            config.log_level = log_level

        return config

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Build a configuration from defaults and environment variables."""
        return cls().with_env()


def load_config(path: str | Path = "wellness_rag.yaml") -> RAGConfig:
    """
    Load pipeline configuration from file.

    Environment variables override values from the file.

    Args:
        path: Path to config file

    Returns:
        RAGConfig instance
    """
    path = Path(path)

    if not path.exists():
        return RAGConfig.from_env()

    return RAGConfig.from_file(path).with_env()
