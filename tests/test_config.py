"""Tests for settings loading."""

from pathlib import Path

import pytest

from ancestor_engine.config import ADAPTER_DEFAULTS, EngineSettings, load_settings

ENGINE_VARS = (
    "ACCEPTANCE_THRESHOLD",
    "ENRICHMENT_THRESHOLD",
    "FAMILYSEARCH_ACCESS_TOKEN",
    "GENI_ACCESS_TOKEN",
    "ANTHROPIC_API_KEY",
    "OPENAI_API_KEY",
    "ENGINE_DB_PATH",
    "RATE_GENI_MIN_INTERVAL",
    "RATE_FREEBMD_MAX",
    "RATE_FAMILYSEARCH_RETRIES",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Start without engine variables and remove any that load_dotenv sets."""
    for name in ENGINE_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def no_env_file(tmp_path):
    return tmp_path / "missing.env"


class TestLoadSettings:
    """Test environment and .env handling."""

    def test_defaults(self, no_env_file):
        settings = load_settings(no_env_file)
        assert settings.resolver.acceptance_threshold == 55
        assert settings.resolver.enrichment_threshold == 65
        assert settings.familysearch_token is None
        assert settings.rate_limits["geni"] == ADAPTER_DEFAULTS["geni"]
        assert settings.db_path == Path("./data/ancestors.db")

    def test_threshold_overrides(self, monkeypatch, no_env_file):
        monkeypatch.setenv("ACCEPTANCE_THRESHOLD", "60")
        monkeypatch.setenv("ENRICHMENT_THRESHOLD", " ")
        settings = load_settings(no_env_file)
        assert settings.resolver.acceptance_threshold == 60
        assert settings.resolver.enrichment_threshold == 65

    def test_rate_limit_overrides(self, monkeypatch, no_env_file):
        monkeypatch.setenv("RATE_GENI_MIN_INTERVAL", "2.5")
        monkeypatch.setenv("RATE_FREEBMD_MAX", "2")
        monkeypatch.setenv("RATE_FAMILYSEARCH_RETRIES", "5")
        settings = load_settings(no_env_file)

        assert settings.rate_limits["geni"].min_interval == 2.5
        assert settings.rate_limits["geni"].max_calls == ADAPTER_DEFAULTS["geni"].max_calls
        assert settings.rate_limits["freebmd"].max_calls == 2
        assert settings.rate_limits["familysearch"].max_retries == 5
        assert ADAPTER_DEFAULTS["geni"].min_interval == 1.0

    def test_bad_integer(self, monkeypatch, no_env_file):
        monkeypatch.setenv("ACCEPTANCE_THRESHOLD", "high")
        with pytest.raises(ValueError, match="ACCEPTANCE_THRESHOLD"):
            load_settings(no_env_file)

    def test_bad_number(self, monkeypatch, no_env_file):
        monkeypatch.setenv("RATE_GENI_MIN_INTERVAL", "soon")
        with pytest.raises(ValueError, match="RATE_GENI_MIN_INTERVAL"):
            load_settings(no_env_file)

    def test_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("GENI_ACCESS_TOKEN=geni-token\nENGINE_DB_PATH=/tmp/engine.db\n")
        settings = load_settings(env_file)
        assert settings.geni_token == "geni-token"
        assert settings.db_path == Path("/tmp/engine.db")

    def test_environment_beats_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("OPENAI_API_KEY=from-file\n")
        monkeypatch.setenv("OPENAI_API_KEY", "from-env")
        assert load_settings(env_file).openai_api_key == "from-env"


class TestEngineSettings:
    def test_defaults_are_independent(self):
        a = EngineSettings()
        b = EngineSettings()
        a.rate_limits["geni"] = ADAPTER_DEFAULTS["freebmd"]
        assert b.rate_limits["geni"] == ADAPTER_DEFAULTS["geni"]
