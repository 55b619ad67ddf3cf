"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``EPHEMERAL_``, nested via ``__``)
2. YAML config file (``config_path`` field or ``EPHEMERAL_CONFIG_PATH`` env var)
3. Defaults defined here
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class IndexerConfig(BaseSettings):
    """Ledger-indexing service (Esplora REST API) settings."""

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERAL_INDEXER__",
        case_sensitive=False,
    )

    url: str = "https://mempool.space/testnet/api"
    timeout: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=4, ge=1)


class ChannelConfig(BaseSettings):
    """Channel protocol constants shared by both parties.

    Changing any of these breaks interoperability with existing channels.
    """

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERAL_CHANNEL__",
        case_sensitive=False,
    )

    address_count: int = Field(default=8, ge=1)
    pbkdf2_iterations: int = Field(default=150_000, ge=1)
    salt: str = "ephemeral::pbkdf2::v1"


class FeeConfig(BaseSettings):
    """Transaction sizing and fee settings."""

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERAL_FEES__",
        case_sensitive=False,
    )

    fee_rate: float = Field(default=10.0, gt=0, description="sat per virtual byte")
    use_recommended: bool = Field(
        default=False, description="take the indexer's half-hour rate when none is given"
    )
    dust_threshold: int = 546
    base_vsize: int = 110
    input_vsize: int = 68
    fee_floor: int = 500
    max_payload_bytes: int = 80


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERAL_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Loads settings from environment variables (``EPHEMERAL_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="EPHEMERAL_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    debug: bool = False
    log_level: str = "INFO"
    config_path: str = ""

    indexer: IndexerConfig = Field(default_factory=IndexerConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))
