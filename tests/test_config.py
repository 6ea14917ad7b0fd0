"""Unit tests for app.config module.

Tests defaults, environment fallbacks, command-line precedence, symbol
list parsing, the require-symbols policy, and value validation.
"""

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest
from pydantic import ValidationError

from app.config import ConfigError, ExporterConfig, load_config
from core.symbols import SymbolFilter

_ENV_VARS: tuple[str, ...] = (
    "SYMBOL",
    "PORT",
    "TIMEOUT",
    "REQUIRE_SYMBOLS",
    "BINANCE_WS_URL",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[MagicMock]:
    """Clear exporter variables and keep any local .env file out."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    with patch("app.config.load_dotenv") as mock_load_dotenv:
        yield mock_load_dotenv


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self) -> None:
        """No arguments and no environment give the documented defaults."""
        config: ExporterConfig = load_config([])
        assert config.symbols.is_empty is True
        assert config.port == 9090
        assert config.timeout == 60.0
        assert config.require_symbols is False
        assert config.source == "Binance"
        assert config.ws_url == "wss://fstream.binance.com"
        assert config.log_level == "INFO"

    def test_dotenv_loaded(self, clean_env: MagicMock) -> None:
        """A .env file is loaded before reading the environment."""
        load_config([])
        clean_env.assert_called_once_with()


class TestEnvironment:
    """Tests for environment variable fallbacks."""

    def test_env_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Every option can come from the environment."""
        monkeypatch.setenv("SYMBOL", "btcusdt,ETHUSDT")
        monkeypatch.setenv("PORT", "9100")
        monkeypatch.setenv("TIMEOUT", "15.5")
        monkeypatch.setenv("REQUIRE_SYMBOLS", "true")
        monkeypatch.setenv("BINANCE_WS_URL", "wss://stream.binance.com:9443")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config: ExporterConfig = load_config([])
        assert config.symbols == SymbolFilter.of("BTCUSDT", "ETHUSDT")
        assert config.port == 9100
        assert config.timeout == 15.5
        assert config.require_symbols is True
        assert config.ws_url == "wss://stream.binance.com:9443"
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("1", True), ("yes", True), ("ON", True), ("0", False), ("", False)],
    )
    def test_require_symbols_env_parsing(
        self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool
    ) -> None:
        """REQUIRE_SYMBOLS accepts the usual truthy spellings."""
        monkeypatch.setenv("REQUIRE_SYMBOLS", raw)
        assert load_config([]).require_symbols is expected

    def test_command_line_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Command-line options override the environment."""
        monkeypatch.setenv("SYMBOL", "ETHUSDT")
        monkeypatch.setenv("PORT", "9100")
        config: ExporterConfig = load_config(["--symbol", "BTCUSDT", "--port", "9200"])
        assert config.symbols == SymbolFilter.of("BTCUSDT")
        assert config.port == 9200


class TestSymbols:
    """Tests for --symbol parsing."""

    def test_repeated_and_comma_lists(self) -> None:
        """--symbol may repeat and may hold comma lists."""
        config: ExporterConfig = load_config(
            ["--symbol", "BTCUSDT,ethusdt", "--symbol", "SOLUSDT"]
        )
        assert config.symbols.symbols == frozenset({"BTCUSDT", "ETHUSDT", "SOLUSDT"})

    def test_blank_symbol_rejected(self) -> None:
        """A blank entry is a validation error."""
        with pytest.raises(ValidationError):
            load_config(["--symbol", "BTCUSDT,"])


class TestPolicy:
    """Tests for ExporterConfig.check_policy()."""

    def test_empty_filter_allowed_by_default(self) -> None:
        """Without the policy flag an empty filter is fine."""
        load_config([]).check_policy()

    def test_empty_filter_rejected_when_required(self) -> None:
        """With the policy flag an empty filter is a ConfigError."""
        config: ExporterConfig = load_config(["--require-symbols"])
        with pytest.raises(ConfigError, match="symbol cannot be empty"):
            config.check_policy()

    def test_required_and_given(self) -> None:
        """The policy passes when a symbol is configured."""
        load_config(["--require-symbols", "--symbol", "BTCUSDT"]).check_policy()


class TestValidation:
    """Tests for out-of-range values."""

    @pytest.mark.parametrize("port", ["0", "65536", "-1"])
    def test_invalid_port(self, port: str) -> None:
        """Port must be 1-65535."""
        with pytest.raises(ValidationError):
            load_config(["--port", port])

    def test_non_numeric_port(self) -> None:
        """argparse rejects a non-integer port."""
        with pytest.raises(SystemExit):
            load_config(["--port", "abc"])

    def test_invalid_timeout(self) -> None:
        """Timeout must be positive."""
        with pytest.raises(ValidationError):
            load_config(["--timeout", "0"])

    def test_invalid_log_level(self) -> None:
        """Unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            load_config(["--log-level", "LOUD"])

    def test_frozen(self) -> None:
        """The config is immutable."""
        config: ExporterConfig = load_config([])
        with pytest.raises(ValidationError):
            config.port = 1  # type: ignore[misc]
