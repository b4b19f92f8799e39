"""Configuration management for Oraculum.

Structural settings come from a TOML file, secrets from the environment
(``ORACULUM_OPENAI_API_KEY`` and friends, or a ``.env`` file).  Any value can
be overridden from the environment with the ``ORACULUM_`` prefix and ``__``
between section and key, e.g. ``ORACULUM_SCHEDULER__WINDOW_CAP=30``.

Config file lookup, first match wins:
  1. the path given on the command line (``oraculum -c``)
  2. ``config/default.toml`` in the working directory
  3. ``~/.oraculum/config.toml``

Default data layout under ~/.oraculum/:
  vault/            Obsidian vault (or a symlink to one)
  data/data.json    Plugin data blob (settings fingerprint + embedding index)
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal, TypeAlias

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from oraculum.indexer.persistence import IndexSettings

ORACULUM_HOME = Path.home() / ".oraculum"

EmbeddingProvider: TypeAlias = Literal["openai", "gemini", "voyage"]


class VaultConfig(BaseSettings):
    """Which notes to index."""

    path: Path = Field(description="Absolute path to the Obsidian vault root")
    excluded_folders: list[str] = Field(default_factory=lambda: [".obsidian", ".git", ".trash"])

    @field_validator("path")
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        v = v.expanduser()
        if not v.is_dir():
            raise ValueError(f"Vault path does not exist: {v}")
        return v.resolve()


class EmbeddingConfig(BaseSettings):
    """Embedding provider and request shaping."""

    provider: EmbeddingProvider = "openai"
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    # Notes per provider call; 1 embeds every note on its own
    batch_size: int = Field(default=16, ge=1)
    max_input_chars: int = Field(default=8000, ge=1)


class SchedulerConfig(BaseSettings):
    """Provider call budget and retry policy."""

    # Retries after the first call, for transient failures only
    max_attempts: int = Field(default=5, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=60.0, ge=0)
    window_cap: int = Field(default=60, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def check_delays(self) -> SchedulerConfig:
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) is below "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class IndexConfig(BaseSettings):
    """Where the index lives and how many related notes to return."""

    data_path: Path = Field(default_factory=lambda: ORACULUM_HOME / "data" / "data.json")
    top_k: int = Field(default=5, ge=1)

    @field_validator("data_path")
    @classmethod
    def expand_data_path(cls, v: Path) -> Path:
        return v.expanduser()


class WatchConfig(BaseSettings):
    debounce_ms: int = Field(default=500, ge=0)


class Settings(BaseSettings):
    """Root configuration."""

    model_config = SettingsConfigDict(
        env_prefix="ORACULUM_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    vault: VaultConfig = Field(default_factory=lambda: VaultConfig(path=ORACULUM_HOME / "vault"))
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    openai_api_key: str = ""
    gemini_api_key: str = ""
    voyage_api_key: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats the TOML values, which arrive as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @property
    def embedding_api_key(self) -> str:
        """API key for ``embedding.provider``; empty when unset."""
        return getattr(self, f"{self.embedding.provider}_api_key", "")

    @property
    def embedding_api_key_env(self) -> str:
        """Environment variable that holds ``embedding_api_key``."""
        return f"ORACULUM_{self.embedding.provider.upper()}_API_KEY"

    def index_settings(self) -> IndexSettings:
        """Fingerprint stored with the index; a mismatch on load discards it."""
        return IndexSettings(
            provider=self.embedding.provider,
            model=self.embedding.model,
            dimensions=self.embedding.dimensions,
        )

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from *path* (or the first default file found), then env vars."""
        config_path = path or _find_config()
        if config_path is None:
            return cls()
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
        return cls(**data)


def _find_config() -> Path | None:
    for candidate in (Path("config/default.toml"), ORACULUM_HOME / "config.toml"):
        if candidate.is_file():
            return candidate
    return None


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)
