"""
Tests for configuration loading and logging setup.
"""

import asyncio
import json
import logging
from unittest.mock import MagicMock

import pytest
import yaml

from polystore.config import PolystoreConfig, get_config, load_config, set_config
from polystore.errors import SchemaError
from polystore.logging_config import (
    HumanFormatter,
    StructuredFormatter,
    create_log_context,
    get_log_level,
    log_context,
    set_log_level,
)
from polystore.repository import RepositoryRegistry


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "polystore.yaml"
    path.write_text(yaml.safe_dump({
        "schema_path": "schema/",
        "relational": {"database_url": "${BILLING_DATABASE_URL}", "pool_size": 4},
        "key_value": {"backend": "redis"},
        "projection": {"max_retries": 5},
    }))
    return path


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("POLYSTORE_DATABASE_URL", "POLYSTORE_PROJECTION_MAX_RETRIES", "POLYSTORE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadConfig:
    """Tests for load_config."""

    def test_loads_yaml_file(self, config_file, clean_env):
        config = load_config(config_file)

        assert config.schema_path == "schema/"
        assert config.relational.pool_size == 4
        assert config.key_value.backend == "redis"
        assert config.projection.max_retries == 5
        assert config.event_log.backend == "memory"

    def test_loads_json_file(self, tmp_path, clean_env):
        path = tmp_path / "polystore.json"
        path.write_text(json.dumps({"event_log": {"backend": "kurrentdb", "context": "billing"}}))

        config = load_config(path)

        assert config.event_log.backend == "kurrentdb"
        assert config.event_log.context == "billing"

    def test_missing_file_gives_defaults(self, tmp_path, clean_env):
        config = load_config(tmp_path / "absent.yaml")

        assert config.to_dict() == PolystoreConfig().to_dict()

    def test_environment_overrides_file(self, config_file, clean_env):
        clean_env.setenv("POLYSTORE_DATABASE_URL", "postgresql+asyncpg://db/billing")
        clean_env.setenv("POLYSTORE_PROJECTION_MAX_RETRIES", "7")

        config = load_config(config_file)

        assert config.relational.database_url == "postgresql+asyncpg://db/billing"
        assert config.projection.max_retries == 7

    def test_variable_references_are_resolved(self, config_file, clean_env):
        clean_env.setenv("BILLING_DATABASE_URL", "sqlite+aiosqlite:///billing.db")

        config = load_config(config_file)

        assert config.relational.resolve_database_url() == "sqlite+aiosqlite:///billing.db"

    def test_unset_reference_is_kept(self, config_file, clean_env):
        clean_env.delenv("BILLING_DATABASE_URL", raising=False)

        config = load_config(config_file)

        assert config.relational.resolve_database_url() == "${BILLING_DATABASE_URL}"

    def test_unknown_setting_raises(self):
        with pytest.raises(SchemaError, match="projection"):
            PolystoreConfig.from_dict({"projection": {"retries": 3}})


class TestGlobalConfig:
    """Tests for get_config / set_config."""

    @pytest.fixture(autouse=True)
    def reset(self):
        yield
        set_config(None)

    def test_set_config_wins(self):
        config = PolystoreConfig.from_dict({"schema_path": "billing.yaml"})
        set_config(config)

        assert get_config() is config

    def test_get_config_reads_configured_path(self, config_file, clean_env):
        set_config(None)
        clean_env.setenv("POLYSTORE_CONFIG", str(config_file))

        assert get_config().schema_path == "schema/"
        assert get_config() is get_config()


class TestLogging:
    """Tests for the structured logging helpers."""

    def make_record(self, message="saved invoice", **extra):
        record = logging.LogRecord("polystore.repository", logging.INFO, __file__, 10, message, (), None)
        for name, value in extra.items():
            setattr(record, name, value)
        return record

    def test_structured_formatter_emits_json(self):
        payload = json.loads(StructuredFormatter().format(self.make_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "polystore.repository"
        assert payload["message"] == "saved invoice"
        assert "context" not in payload

    def test_log_context_is_attached(self):
        context = create_log_context("InvoiceRepository", "save", "INV-1", None)

        with log_context(**context):
            payload = json.loads(StructuredFormatter().format(self.make_record()))
        outside = json.loads(StructuredFormatter().format(self.make_record()))

        assert payload["context"]["operation"] == "save"
        assert payload["context"]["subject_key"] == "INV-1"
        assert "context" not in outside

    @pytest.mark.asyncio
    async def test_log_context_is_scoped_to_task(self):
        both_entered = asyncio.Event()
        entered = []

        async def save(key):
            with log_context(operation="save", subject_key=key):
                entered.append(key)
                if len(entered) == 2:
                    both_entered.set()
                await asyncio.wait_for(both_entered.wait(), timeout=1.0)
                return json.loads(StructuredFormatter().format(self.make_record()))

        first, second = await asyncio.gather(save("INV-1"), save("INV-2"))
        outside = json.loads(StructuredFormatter().format(self.make_record()))

        assert first["context"]["subject_key"] == "INV-1"
        assert second["context"]["subject_key"] == "INV-2"
        assert "context" not in outside

    def test_human_formatter_without_color(self):
        line = HumanFormatter(use_color=False).format(self.make_record(context={"operation": "get"}))

        assert "INFO" in line
        assert "saved invoice" in line
        assert '"operation": "get"' in line

    def test_set_log_level(self):
        previous = get_log_level()
        try:
            set_log_level("debug")

            assert get_log_level() == "DEBUG"
            assert logging.getLogger().level == logging.DEBUG
        finally:
            set_log_level(previous)


class TestRegistryFromConfig:
    """Tests for RepositoryRegistry.from_config."""

    def test_builds_registry_and_configures_logging(self, tmp_path, schema_data, monkeypatch):
        schema_path = tmp_path / "billing.yaml"
        schema_path.write_text(yaml.safe_dump(schema_data))
        setup = MagicMock()
        monkeypatch.setattr("polystore.repository.registry.setup_logging", setup)
        config = PolystoreConfig.from_dict({
            "schema_path": str(schema_path),
            "logging": {"level": "DEBUG", "structured_console": True},
        })

        registry = RepositoryRegistry.from_config(config)

        assert registry.names == ["Region", "Customer", "Invoice"]
        assert registry.config is config
        setup.assert_called_once_with(level="DEBUG", log_file=None, structured_console=True)

    def test_schema_path_is_required(self):
        with pytest.raises(ValueError):
            RepositoryRegistry.from_config(PolystoreConfig())
