"""
Configuration Module - Load and manage session coordinator configuration.

This module provides support for loading configuration from:
- YAML configuration files (.session-coordinator.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic configuration (keyword overrides)
2. Environment variables
3. Configuration file
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError
from .memory.embeddings import (
    EmbeddingProvider,
    OpenAIEmbedding,
    SentenceTransformerEmbedding,
    SimpleEmbedding,
)
from .memory.storage import QdrantVectorIndex, VectorIndex
from .stuck.detector import StuckDetectorConfig


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".session-coordinator.yml",
    ".session-coordinator.yaml",
]

EMBEDDING_PROVIDERS = ("openai", "simple", "sentence_transformers")

IN_MEMORY_URL = ":memory:"


@dataclass
class QdrantConfig:
    """Connection settings for the Qdrant vector index."""

    url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: int = 30


@dataclass
class EmbeddingConfig:
    """Embedding provider selection."""

    provider: str = "openai"
    model: Optional[str] = None
    dimension: Optional[int] = None
    max_input_chars: int = 8000
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    timeout: float = 30.0


@dataclass
class LoggingConfig:
    """Log output settings."""

    level: str = "INFO"
    json_output: bool = False


@dataclass
class SessionCoordinatorConfig:
    """
    Complete configuration for the session coordinator.

    Example YAML configuration:
        ```yaml
        qdrant:
          url: "http://localhost:6333"
          timeout: 30

        embedding:
          provider: "openai"
          model: "text-embedding-3-large"

        stuck:
          cooldown_minutes: 10
          no_progress_minutes: 20

        logging:
          level: "INFO"
          json_output: false
        ```
    """

    qdrant: QdrantConfig = field(default_factory=QdrantConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    stuck: StuckDetectorConfig = field(default_factory=StuckDetectorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "SessionCoordinatorConfig":
        """Create configuration from dictionary."""
        qdrant_data = data.get("qdrant") or {}
        embedding_data = data.get("embedding") or {}
        logging_data = data.get("logging") or {}

        return cls(
            qdrant=QdrantConfig(
                url=qdrant_data.get("url"),
                api_key=qdrant_data.get("api_key"),
                timeout=int(qdrant_data.get("timeout", 30)),
            ),
            embedding=EmbeddingConfig(
                provider=embedding_data.get("provider", "openai"),
                model=embedding_data.get("model"),
                dimension=embedding_data.get("dimension"),
                max_input_chars=int(embedding_data.get("max_input_chars", 8000)),
                api_key=embedding_data.get("api_key"),
                api_base=embedding_data.get("api_base"),
                timeout=float(embedding_data.get("timeout", 30.0)),
            ),
            stuck=StuckDetectorConfig.from_dict(data.get("stuck") or {}),
            logging=LoggingConfig(
                level=str(logging_data.get("level", "INFO")).upper(),
                json_output=bool(logging_data.get("json_output", False)),
            ),
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary (secrets redacted)."""
        return {
            "qdrant": {
                "url": self.qdrant.url,
                "api_key": "***" if self.qdrant.api_key else None,
                "timeout": self.qdrant.timeout,
            },
            "embedding": {
                "provider": self.embedding.provider,
                "model": self.embedding.model,
                "dimension": self.embedding.dimension,
                "max_input_chars": self.embedding.max_input_chars,
                "api_key": "***" if self.embedding.api_key else None,
                "api_base": self.embedding.api_base,
                "timeout": self.embedding.timeout,
            },
            "stuck": self.stuck.to_dict(),
            "logging": {
                "level": self.logging.level,
                "json_output": self.logging.json_output,
            },
        }

    def validate(self) -> None:
        """
        Check that required endpoints and credentials are present.

        Raises:
            ConfigurationError: If the Qdrant URL is missing, the embedding
                provider is unknown, or OpenAI is selected without a key
        """
        if not self.qdrant.url:
            raise ConfigurationError("Missing QDRANT_URL environment variable")

        if self.embedding.provider not in EMBEDDING_PROVIDERS:
            raise ConfigurationError(
                f"Unknown embedding provider: {self.embedding.provider}. "
                f"Available: {', '.join(EMBEDDING_PROVIDERS)}"
            )

        if self.embedding.provider == "openai" and not self.embedding.api_key:
            raise ConfigurationError("Missing OPENAI_API_KEY environment variable")


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches in the following order:
    1. The specified start_path directory and its parents
    2. Current working directory and its parents
    3. User home directory

    Args:
        start_path: Directory to start searching from.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []

    for origin in filter(None, [start_path, str(Path.cwd())]):
        current = Path(origin).resolve()
        search_dirs.append(current)
        search_dirs.extend(current.parents)

    search_dirs.append(Path.home())

    seen = set()
    for directory in search_dirs:
        if directory in seen:
            continue
        seen.add(directory)
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> dict:
    """
    Load a YAML configuration file.

    Args:
        file_path: Path to the YAML file.

    Returns:
        Dictionary with configuration data.

    Raises:
        ConfigurationError: If the file is not valid YAML or not a mapping.
    """
    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Error loading config file {file_path}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {file_path} must contain a mapping")
    return data


def load_config_from_env() -> dict:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - QDRANT_URL: Qdrant endpoint (":memory:" for in-process)
    - QDRANT_API_KEY: Qdrant Cloud API key
    - OPENAI_API_KEY: OpenAI API key
    - SESSION_COORDINATOR_EMBEDDING_PROVIDER: openai, simple or sentence_transformers
    - SESSION_COORDINATOR_EMBEDDING_MODEL: Embedding model name
    - SESSION_COORDINATOR_LOG_LEVEL: Log level

    Returns:
        Dictionary with configuration from environment.
    """
    config: dict = {"qdrant": {}, "embedding": {}, "logging": {}}

    if os.environ.get("QDRANT_URL"):
        config["qdrant"]["url"] = os.environ["QDRANT_URL"]

    if os.environ.get("QDRANT_API_KEY"):
        config["qdrant"]["api_key"] = os.environ["QDRANT_API_KEY"]

    if os.environ.get("OPENAI_API_KEY"):
        config["embedding"]["api_key"] = os.environ["OPENAI_API_KEY"]

    if os.environ.get("SESSION_COORDINATOR_EMBEDDING_PROVIDER"):
        config["embedding"]["provider"] = os.environ["SESSION_COORDINATOR_EMBEDDING_PROVIDER"]

    if os.environ.get("SESSION_COORDINATOR_EMBEDDING_MODEL"):
        config["embedding"]["model"] = os.environ["SESSION_COORDINATOR_EMBEDDING_MODEL"]

    if os.environ.get("SESSION_COORDINATOR_LOG_LEVEL"):
        config["logging"]["level"] = os.environ["SESSION_COORDINATOR_LOG_LEVEL"]

    return config


def load_config(
    config_path: Optional[str] = None,
    project_path: Optional[str] = None,
    **overrides: Any,
) -> SessionCoordinatorConfig:
    """
    Load configuration from all sources.

    Overrides are nested dictionaries keyed by section, e.g.
    ``load_config(qdrant={"url": ":memory:"}, embedding={"provider": "simple"})``.

    Args:
        config_path: Optional explicit path to config file.
        project_path: Optional project path to search for config.
        **overrides: Configuration overrides by section.

    Returns:
        Merged SessionCoordinatorConfig.
    """
    merged_config: dict = {}

    if config_path:
        file_path = Path(config_path)
        if not file_path.is_file():
            raise ConfigurationError(f"Config file not found: {config_path}")
        merged_config = _deep_merge(merged_config, load_yaml_file(file_path))
    else:
        config_file = find_config_file(project_path)
        if config_file:
            merged_config = _deep_merge(merged_config, load_yaml_file(config_file))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        merged_config = _deep_merge(merged_config, overrides)

    return SessionCoordinatorConfig.from_dict(merged_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Dictionary with override values.

    Returns:
        Merged dictionary.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result


def create_vector_index(config: SessionCoordinatorConfig) -> VectorIndex:
    """Build the vector index described by the configuration."""
    if not config.qdrant.url:
        raise ConfigurationError("Missing QDRANT_URL environment variable")
    return QdrantVectorIndex(
        url=config.qdrant.url,
        api_key=config.qdrant.api_key,
        timeout=config.qdrant.timeout,
    )


def create_embedding_provider(config: SessionCoordinatorConfig) -> EmbeddingProvider:
    """Build the embedding provider described by the configuration."""
    settings = config.embedding
    provider = settings.provider

    if provider == "openai":
        return OpenAIEmbedding(
            api_key=settings.api_key,
            model=settings.model,
            dimension=settings.dimension,
            api_base=settings.api_base,
            timeout=settings.timeout,
            max_input_chars=settings.max_input_chars,
        )
    if provider == "simple":
        return SimpleEmbedding(
            dimension=settings.dimension or SimpleEmbedding.DIMENSION,
            max_input_chars=settings.max_input_chars,
        )
    if provider == "sentence_transformers":
        return SentenceTransformerEmbedding(
            model_name=settings.model,
            max_input_chars=settings.max_input_chars,
        )

    raise ConfigurationError(
        f"Unknown embedding provider: {provider}. "
        f"Available: {', '.join(EMBEDDING_PROVIDERS)}"
    )
