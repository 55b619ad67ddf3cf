"""Tests for the configuration system."""

from __future__ import annotations

import textwrap
from typing import TYPE_CHECKING

import pytest
from pydantic import ValidationError

from ephemeral_channel.config.settings import (
    AppConfig,
    ChannelConfig,
    FeeConfig,
    IndexerConfig,
    MetricsConfig,
    _load_yaml,
)

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    """Verify all default values are correct."""

    def test_indexer_defaults(self) -> None:
        cfg = IndexerConfig()
        assert cfg.url == "https://mempool.space/testnet/api"
        assert cfg.timeout == 30.0
        assert cfg.max_concurrency == 4

    def test_channel_defaults(self) -> None:
        cfg = ChannelConfig()
        assert cfg.address_count == 8
        assert cfg.pbkdf2_iterations == 150_000
        assert cfg.salt == "ephemeral::pbkdf2::v1"

    def test_fee_defaults(self) -> None:
        cfg = FeeConfig()
        assert cfg.fee_rate == 10.0
        assert cfg.use_recommended is False
        assert cfg.dust_threshold == 546
        assert cfg.base_vsize == 110
        assert cfg.input_vsize == 68
        assert cfg.fee_floor == 500
        assert cfg.max_payload_bytes == 80

    def test_metrics_defaults(self) -> None:
        assert MetricsConfig().enabled is True

    def test_app_config_defaults(self) -> None:
        cfg = AppConfig()
        assert cfg.debug is False
        assert cfg.log_level == "INFO"
        assert cfg.config_path == ""
        assert isinstance(cfg.indexer, IndexerConfig)
        assert isinstance(cfg.channel, ChannelConfig)
        assert isinstance(cfg.fees, FeeConfig)


class TestValidation:
    def test_zero_address_count_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChannelConfig(address_count=0)

    def test_non_positive_fee_rate_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FeeConfig(fee_rate=0)

    def test_zero_concurrency_rejected(self) -> None:
        with pytest.raises(ValidationError):
            IndexerConfig(max_concurrency=0)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------


class TestEnvOverrides:
    def test_top_level_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EPHEMERAL_DEBUG", "true")
        monkeypatch.setenv("EPHEMERAL_LOG_LEVEL", "DEBUG")
        cfg = AppConfig()
        assert cfg.debug is True
        assert cfg.log_level == "DEBUG"

    def test_nested_env_via_delimiter(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EPHEMERAL_FEES__FEE_RATE", "2.5")
        assert AppConfig().fees.fee_rate == 2.5

    def test_nested_indexer_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EPHEMERAL_INDEXER__URL", "https://blockstream.info/testnet/api")
        monkeypatch.setenv("EPHEMERAL_INDEXER__MAX_CONCURRENCY", "2")
        cfg = AppConfig()
        assert cfg.indexer.url == "https://blockstream.info/testnet/api"
        assert cfg.indexer.max_concurrency == 2

    def test_nested_channel_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("EPHEMERAL_CHANNEL__ADDRESS_COUNT", "12")
        assert AppConfig().channel.address_count == 12


# ---------------------------------------------------------------------------
# YAML
# ---------------------------------------------------------------------------


class TestYaml:
    def test_load_yaml_nonexistent(self, tmp_path: Path) -> None:
        assert _load_yaml(tmp_path / "nonexistent.yaml") == {}

    def test_load_yaml_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert _load_yaml(path) == {}

    def test_from_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            textwrap.dedent(
                """\
                debug: true
                indexer:
                  url: https://example.test/api
                fees:
                  fee_rate: 3
                """
            )
        )
        cfg = AppConfig.from_yaml(path)
        assert cfg.debug is True
        assert cfg.indexer.url == "https://example.test/api"
        assert cfg.fees.fee_rate == 3.0
        assert cfg.fees.dust_threshold == 546

    def test_env_beats_yaml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("fees:\n  fee_rate: 3\n  fee_floor: 100\n")
        monkeypatch.setenv("EPHEMERAL_FEES__FEE_RATE", "7")
        cfg = AppConfig.from_yaml(path)
        assert cfg.fees.fee_rate == 7.0
        assert cfg.fees.fee_floor == 100
