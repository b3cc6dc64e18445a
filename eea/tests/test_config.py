# eea/tests/test_config.py
import pytest

from eea.config import SCHEMA_VERSION, ConfigError, Settings, load_settings

_ENV = (
    "EEA_CONFIG_PATH",
    "EEA_SIGNING_KEY",
    "EEA_RETENTION_DAYS",
    "EEA_MAX_BODY_BYTES",
    "EEA_MAX_PAYLOAD_BYTES",
    "EEA_DEFAULT_RATE_LIMIT_PER_MIN",
    "EEA_KV_DSN",
    "EEA_CORS_ALLOW_ALL",
    "EEA_ENABLE_DOCS",
    "EEA_LOG_LEVEL",
    "EEA_SERVICE_NAME",
    "EEA_VERSION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    s = load_settings()
    assert s.signing_secret() == "k"
    assert s.service_name == "eea-tool"
    assert s.version == "1.1.0"
    assert s.schema_version == SCHEMA_VERSION == "eea.v1"
    assert s.retention_days == 30
    assert s.retention_seconds == 30 * 86400
    assert s.max_body_bytes == 128 * 1024
    assert s.max_payload_bytes == 64 * 1024
    assert s.default_rate_limit_per_min == 60
    assert s.kv_dsn == "mem://"
    assert s.cors_allow_all is True
    assert s.enable_docs is False


def test_signing_key_required():
    with pytest.raises(ConfigError):
        load_settings()


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    monkeypatch.setenv("EEA_RETENTION_DAYS", "7")
    monkeypatch.setenv("EEA_DEFAULT_RATE_LIMIT_PER_MIN", "5")
    monkeypatch.setenv("EEA_ENABLE_DOCS", "true")
    monkeypatch.setenv("EEA_KV_DSN", "sqlite:///tmp.db")
    s = load_settings()
    assert s.retention_days == 7
    assert s.default_rate_limit_per_min == 5
    assert s.enable_docs is True
    assert s.kv_dsn == "sqlite:///tmp.db"


def test_malformed_int_falls_back(monkeypatch):
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    monkeypatch.setenv("EEA_RETENTION_DAYS", "thirty")
    assert load_settings().retention_days == 30


def test_out_of_range_rejected(monkeypatch):
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    monkeypatch.setenv("EEA_MAX_BODY_BYTES", "0")
    with pytest.raises(ConfigError):
        load_settings()


def test_yaml_overlay_then_env(tmp_path, monkeypatch):
    cfg = tmp_path / "eea.yaml"
    cfg.write_text("retention_days: 10\nmax_payload_bytes: 1024\nschema_version: eea.v9\n")
    monkeypatch.setenv("EEA_CONFIG_PATH", str(cfg))
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    monkeypatch.setenv("EEA_RETENTION_DAYS", "12")
    s = load_settings()
    assert s.retention_days == 12
    assert s.max_payload_bytes == 1024
    assert s.schema_version == "eea.v1"


def test_yaml_must_be_mapping(tmp_path, monkeypatch):
    cfg = tmp_path / "eea.yaml"
    cfg.write_text("- a\n- b\n")
    monkeypatch.setenv("EEA_CONFIG_PATH", str(cfg))
    monkeypatch.setenv("EEA_SIGNING_KEY", "k")
    with pytest.raises(ConfigError):
        load_settings()


def test_unknown_field_rejected():
    with pytest.raises(ConfigError):
        load_settings({"signing_key": "k", "nope": 1})


def test_config_hash_excludes_secret():
    a = Settings(signing_key="one")
    b = Settings(signing_key="two")
    c = Settings(signing_key="one", retention_days=2)
    assert a.config_hash() == b.config_hash()
    assert a.config_hash() != c.config_hash()
    assert a.config_hash().startswith("sha256:")
    assert "one" not in repr(a)
