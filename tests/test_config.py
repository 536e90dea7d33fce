"""Tests for settings loaded from the environment."""

from decimal import Decimal

import pytest

from salary_engine.config import ComparisonConfig, Settings, get_settings


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "DATABASE_URL",
            "ENGINE_VERSION",
            "LOG_LEVEL",
            "CONTRIBUTION_GROUP_RATES",
            "TAX_GROUPS",
            "TOTAL_EXCLUDES_TAX",
        ):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setattr("salary_engine.config.load_dotenv", lambda: False)

        settings = Settings.from_env()

        assert settings.engine_version == "1.0.0"
        assert settings.log_level == "WARNING"
        assert settings.contribution_group_rates == {}
        assert settings.tax_groups == frozenset({"tax"})
        assert settings.total_excludes_tax is False

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setattr("salary_engine.config.load_dotenv", lambda: False)
        monkeypatch.setenv("ENGINE_VERSION", "2.1.0")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("CONTRIBUTION_GROUP_RATES", "pension=0.135, health=0.05")
        monkeypatch.setenv("TAX_GROUPS", "tax,withholding")
        monkeypatch.setenv("TOTAL_EXCLUDES_TAX", "true")

        settings = get_settings()

        assert settings.engine_version == "2.1.0"
        assert settings.log_level == "DEBUG"
        assert settings.contribution_group_rates == {
            "pension": Decimal("0.135"),
            "health": Decimal("0.05"),
        }
        assert settings.tax_groups == frozenset({"tax", "withholding"})
        assert settings.total_excludes_tax is True
        assert get_settings() is settings

    def test_malformed_group_rates(self, monkeypatch):
        monkeypatch.setattr("salary_engine.config.load_dotenv", lambda: False)
        monkeypatch.setenv("CONTRIBUTION_GROUP_RATES", "pension")

        with pytest.raises(ValueError, match="expected group=rate"):
            Settings.from_env()


class TestComparisonConfig:
    def test_from_settings(self, monkeypatch):
        monkeypatch.setattr("salary_engine.config.load_dotenv", lambda: False)
        monkeypatch.setenv("CONTRIBUTION_GROUP_RATES", "pension=0.1")
        monkeypatch.setenv("TOTAL_EXCLUDES_TAX", "true")
        monkeypatch.delenv("TAX_GROUPS", raising=False)

        config = ComparisonConfig.from_settings(Settings.from_env())

        assert config.group_rates == {"pension": Decimal("0.1")}
        assert config.tax_groups == frozenset({"tax"})
        assert config.exclude_tax_from_total is True

    def test_config_is_immutable(self):
        config = ComparisonConfig()

        with pytest.raises(AttributeError):
            config.exclude_tax_from_total = True  # type: ignore[misc]
