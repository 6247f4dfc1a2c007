"""
config.py - Settings and index parameters.

Two layers:

    Settings     Process configuration loaded by pydantic-settings from
                 METAVSS_* environment variables (or a .env file). Read once
                 by the scripts at startup.

    IndexConfig  The immutable parameters one index is built with (dimension,
                 LSH table shape, seed). Passed explicitly to IndexBuilder,
                 never read from globals.

The embedding model location is the one setting without a default. If it is
missing, load_settings() raises ConfigurationError before any work starts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from metavss.errors import ConfigurationError

# fastText's published vectors (cc.*.300.vec, wiki-news-300d) are 300-d
DEFAULT_DIMENSION = 300
DEFAULT_TABLE_COUNT = 32
DEFAULT_HASHES_PER_TABLE = 32
DEFAULT_CANDIDATE_MULTIPLIER = 4

# Signatures are packed into uint64 keys
MAX_HASHES_PER_TABLE = 64


@dataclass(frozen=True)
class IndexConfig:
    """
    Parameters fixed for the whole lifetime of one index.

    Attributes:
        dimension: Number of components in every vector (D)
        table_count: Number of LSH prefix trees (more = better recall, more memory)
        hashes_per_table: Hyperplane bits per signature (max 64)
        candidate_multiplier: LSH queries gather at least this many candidates per
                              requested result before exact reranking
        seed: Seed for the random hyperplanes. None = different planes every build.
    """

    dimension: int = DEFAULT_DIMENSION
    table_count: int = DEFAULT_TABLE_COUNT
    hashes_per_table: int = DEFAULT_HASHES_PER_TABLE
    candidate_multiplier: int = DEFAULT_CANDIDATE_MULTIPLIER
    seed: Optional[int] = None

    def __post_init__(self) -> None:
        if self.dimension <= 0:
            raise ConfigurationError("dimension must be > 0")
        if self.table_count <= 0:
            raise ConfigurationError("table_count must be > 0")
        if not 0 < self.hashes_per_table <= MAX_HASHES_PER_TABLE:
            raise ConfigurationError(
                f"hashes_per_table must be in 1..{MAX_HASHES_PER_TABLE}"
            )
        if self.candidate_multiplier <= 0:
            raise ConfigurationError("candidate_multiplier must be > 0")


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.

    Every field can be set with a METAVSS_ prefixed variable, for example
    METAVSS_EMBEDDING_MODEL_PATH=/models/cc.en.300.vec
    """

    model_config = SettingsConfigDict(
        env_prefix="METAVSS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Embeddings
    # =========================================================================
    EMBEDDING_MODEL_PATH: str  # .vec file or SentenceTransformer model; required
    EMBEDDING_DIM: int = DEFAULT_DIMENSION

    # =========================================================================
    # Metadata database
    # =========================================================================
    DATABASE_PATH: str = "metavss.db"

    # =========================================================================
    # Cosine LSH forest
    # =========================================================================
    LSH_TABLE_COUNT: int = DEFAULT_TABLE_COUNT
    LSH_HASHES_PER_TABLE: int = DEFAULT_HASHES_PER_TABLE
    LSH_CANDIDATE_MULTIPLIER: int = DEFAULT_CANDIDATE_MULTIPLIER
    LSH_SEED: Optional[int] = None

    # =========================================================================
    # Logging
    # =========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    def index_config(self) -> IndexConfig:
        return IndexConfig(
            dimension=self.EMBEDDING_DIM,
            table_count=self.LSH_TABLE_COUNT,
            hashes_per_table=self.LSH_HASHES_PER_TABLE,
            candidate_multiplier=self.LSH_CANDIDATE_MULTIPLIER,
            seed=self.LSH_SEED,
        )


def load_settings(**overrides) -> Settings:
    """
    Load Settings from the environment, applying keyword overrides on top.

    Raises:
        ConfigurationError: a required setting (EMBEDDING_MODEL_PATH) is missing
                            or a value does not validate
    """
    try:
        settings = Settings(**overrides)
    except ValidationError as exc:
        missing = [
            ".".join(str(part) for part in err["loc"])
            for err in exc.errors()
            if err["type"] == "missing"
        ]
        if missing:
            raise ConfigurationError(
                "missing required setting(s): "
                + ", ".join(f"METAVSS_{name}" for name in missing)
            ) from exc
        raise ConfigurationError(str(exc)) from exc

    if not settings.EMBEDDING_MODEL_PATH.strip():
        raise ConfigurationError("METAVSS_EMBEDDING_MODEL_PATH is empty")
    return settings
