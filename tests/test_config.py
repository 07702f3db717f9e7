"""Tests for rolodex configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from rolodex.config import CONFIG_FILENAME, ConfigError, load_config, parse_config

pytestmark = pytest.mark.unit

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FULL_TOML = """\
[database]
name = "rolodex_test"
host = "db.internal"
port = 6543
user = "svc"
password = "${ROLODEX_TEST_DB_PASSWORD}"
max_pool_size = 4

[logging]
level = "debug"
format = "JSON"

[classifier]
api_key = "${ROLODEX_TEST_API_KEY}"
timeout_s = 5
max_body_chars = 1500
cache_ttl_s = 60

[verification]
auto_verify_min_emails = 4
queue_min_confidence = 0.9
queue_min_emails = 3
batch_concurrency = 2

[sync]
lease_timeout_s = 600
interval_s = 1800
page_size = 500
access_token_env = "MY_TOKEN"
"""


@pytest.fixture(autouse=True)
def _clean_db_env(monkeypatch: pytest.MonkeyPatch):
    for name in ("DATABASE_URL", "POSTGRES_HOST", "POSTGRES_PORT", "POSTGRES_SSLMODE"):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / CONFIG_FILENAME
    path.write_text(text)
    return path


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------


def test_full_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ROLODEX_TEST_DB_PASSWORD", "s3cret")
    monkeypatch.setenv("ROLODEX_TEST_API_KEY", "sk-test")

    config = load_config(_write(tmp_path, FULL_TOML))

    assert config.database.name == "rolodex_test"
    assert config.database.host == "db.internal"
    assert config.database.port == 6543
    assert config.database.password == "s3cret"
    assert config.database.max_pool_size == 4
    assert config.logging.level == "DEBUG"
    assert config.logging.format == "json"
    assert config.classifier.enabled
    assert config.classifier.api_key == "sk-test"
    assert config.classifier.max_body_chars == 1500
    assert config.verification.auto_verify_min_emails == 4
    assert config.verification.queue_min_confidence == pytest.approx(0.9)
    assert config.verification.batch_concurrency == 2
    assert config.sync.lease_timeout_s == 600.0
    assert config.sync.page_size == 500
    assert config.sync.access_token_env == "MY_TOKEN"


def test_directory_path_is_accepted(tmp_path: Path):
    _write(tmp_path, "")
    config = load_config(tmp_path)
    assert config.database.name == "rolodex"


def test_defaults():
    config = parse_config({})
    assert config.database.host == "localhost"
    assert config.logging.format == "text"
    assert not config.classifier.enabled
    assert config.verification.auto_verify_min_emails == 3
    assert config.verification.queue_min_confidence == pytest.approx(0.85)
    assert config.verification.queue_min_emails == 2
    assert config.sync.lease_timeout_s == 900.0


def test_database_url_supplies_connection_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@pg.example:5999/ignored?sslmode=require")
    config = parse_config({"database": {"name": "contacts"}})
    assert config.database.host == "pg.example"
    assert config.database.port == 5999
    assert config.database.user == "u"
    assert config.database.ssl == "require"
    assert config.database.name == "contacts"


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.toml")


def test_invalid_toml(tmp_path: Path):
    with pytest.raises(ConfigError, match="Invalid TOML"):
        load_config(_write(tmp_path, "[database\nname = 1"))


def test_unresolved_env_vars_are_reported_together(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("ROLODEX_MISSING_A", raising=False)
    monkeypatch.delenv("ROLODEX_MISSING_B", raising=False)
    with pytest.raises(ConfigError, match="ROLODEX_MISSING_A, ROLODEX_MISSING_B"):
        parse_config({"database": {"password": "${ROLODEX_MISSING_A}${ROLODEX_MISSING_B}"}})


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "data",
    [
        {"database": "not-a-table"},
        {"database": {"name": "  "}},
        {"database": {"min_pool_size": 5, "max_pool_size": 2}},
        {"logging": {"format": "xml"}},
        {"classifier": {"api_key": 42}},
        {"classifier": {"timeout_s": 0}},
        {"verification": {"queue_min_confidence": 1.5}},
        {"verification": {"queue_min_confidence": "high"}},
        {"verification": {"auto_verify_min_emails": True}},
        {"sync": {"page_size": 5000}},
        {"sync": {"access_token_env": ""}},
    ],
    ids=[
        "database-not-table",
        "blank-db-name",
        "pool-sizes",
        "log-format",
        "api-key-type",
        "timeout",
        "confidence-range",
        "confidence-type",
        "bool-is-not-int",
        "page-size",
        "token-env",
    ],
)
def test_invalid_values(data):
    with pytest.raises(ConfigError):
        parse_config(data)


def test_blank_api_key_disables_classifier():
    config = parse_config({"classifier": {"api_key": "   "}})
    assert config.classifier.api_key is None
    assert not config.classifier.enabled
