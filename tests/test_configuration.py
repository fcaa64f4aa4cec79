import logging

import pytest

from dropservices_admin.configuration import AdminConfig, MetricsConfig
from dropservices_admin.logging_config import setup_logging
from dropservices_admin.storage_config import load_storage_config

STORAGE_ENV = (
    "DROPSERVICES_STORE_DIR",
    "DROPSERVICES_DATABASE_URL",
    "DROPSERVICES_DATABASE_ECHO",
    "DROPSERVICES_STORE_BACKEND",
    "DROPSERVICES_TABLE_PREFIX",
)


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in STORAGE_ENV + ("METRICS__EXPIRING_WINDOW_DAYS", "DISPLAY__CURRENCY", "CORS_ORIGINS"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_metrics_config_maps_to_filters():
    filters = MetricsConfig(expiring_window_days=14).to_filters(granularity="week")

    assert filters.expiring_window_days == 14
    assert filters.granularity == "week"
    assert filters.growth_window_days == 30


def test_admin_config_reads_nested_env(clean_env):
    clean_env.setenv("METRICS__EXPIRING_WINDOW_DAYS", "14")
    clean_env.setenv("DISPLAY__CURRENCY", "EUR")
    clean_env.setenv("CORS_ORIGINS", "http://localhost:5173, https://admin.example.com")

    config = AdminConfig.from_env({"display": {"page_size": 25}})

    assert config.metrics.expiring_window_days == 14
    assert config.display.currency == "EUR"
    assert config.display.page_size == 25
    assert config.cors_origins == ("http://localhost:5173", "https://admin.example.com")


def test_admin_config_defaults(clean_env):
    config = AdminConfig.from_env()

    assert config.display.currency == "TND"
    assert config.display.page_size == 10
    assert config.cors_origins == ("*",)


def test_storage_defaults_to_memory(clean_env):
    config = load_storage_config()

    assert config.backend == "memory"
    assert config.collection_prefix == "ds_"


def test_storage_picks_database_when_url_is_set(clean_env):
    clean_env.setenv("DROPSERVICES_DATABASE_URL", "sqlite:///admin.db")
    clean_env.setenv("DROPSERVICES_DATABASE_ECHO", "yes")

    config = load_storage_config()

    assert config.backend == "database"
    assert config.remote_database.url == "sqlite:///admin.db"
    assert config.remote_database.echo is True


def test_storage_picks_local_when_directory_is_given(clean_env, tmp_path):
    config = load_storage_config({"storage": {"local": {"directory": str(tmp_path)}, "collection_prefix": "test_"}})

    assert config.backend == "local"
    assert config.local.directory == str(tmp_path)
    assert config.collection_prefix == "test_"


def test_explicit_backend_wins(clean_env):
    clean_env.setenv("DROPSERVICES_DATABASE_URL", "sqlite:///admin.db")
    clean_env.setenv("DROPSERVICES_STORE_BACKEND", "memory")

    assert load_storage_config().backend == "memory"


def test_setup_logging_configures_root_once(monkeypatch, tmp_path):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", [])
    monkeypatch.setattr(root, "level", root.level)
    logfile = tmp_path / "admin.log"

    setup_logging("DEBUG", str(logfile))
    setup_logging("DEBUG", str(logfile))
    handlers = list(root.handlers)
    logging.getLogger("dropservices_admin.test").info("hello")
    for handler in handlers:
        handler.flush()
        handler.close()

    assert len(handlers) == 2
    assert root.level == logging.DEBUG
    assert "hello" in logfile.read_text(encoding="utf-8")
