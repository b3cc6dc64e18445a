# eea/config.py
from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError

from .canonical import canonical_bytes
from .hashing import sha256_tagged


_log = logging.getLogger(__name__)

SCHEMA_VERSION = "eea.v1"


class ConfigError(RuntimeError):
    """Raised at startup when the configuration cannot be used."""


# ---------------------------------------------------------------------------
# Env helpers
# ---------------------------------------------------------------------------


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("ignoring non-integer value for %s", name)
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load a top-level mapping from YAML.

    A missing path yields an empty overlay; a file that exists but does not
    hold a mapping is a configuration error.
    """
    if not path or not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return {str(k): v for k, v in doc.items()}


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseModel):
    # --- Identity ---------------------------------------------------------

    service_name: str = "eea-tool"
    version: str = "1.1.0"
    schema_version: str = SCHEMA_VERSION

    # --- Secrets ----------------------------------------------------------

    # HMAC key for attestation signatures. No default: a deployment without
    # it cannot produce verifiable records.
    signing_key: SecretStr

    # --- Retention / limits -----------------------------------------------

    retention_days: int = Field(30, ge=1)
    max_body_bytes: int = Field(128 * 1024, ge=1)
    max_payload_bytes: int = Field(64 * 1024, ge=1)
    default_rate_limit_per_min: int = Field(60, ge=1)

    # --- Substrate --------------------------------------------------------

    kv_dsn: str = "mem://"

    # --- HTTP -------------------------------------------------------------

    cors_allow_all: bool = True
    enable_docs: bool = False
    log_level: str = "INFO"

    class Config:
        extra = "forbid"
        frozen = True

    @property
    def retention_seconds(self) -> int:
        return self.retention_days * 24 * 60 * 60

    def signing_secret(self) -> str:
        return self.signing_key.get_secret_value()

    def config_hash(self) -> str:
        """
        Stable fingerprint of the non-secret settings.

        The signing key is excluded so the value is safe for logs and
        health output.
        """
        payload = self.model_dump(mode="json", exclude={"signing_key"})
        return sha256_tagged(canonical_bytes(payload))


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

_ENV_OVERRIDES: Dict[str, Callable[[str, Any], Any]] = {
    "EEA_SERVICE_NAME": _env_str,
    "EEA_VERSION": _env_str,
    "EEA_RETENTION_DAYS": _env_int,
    "EEA_MAX_BODY_BYTES": _env_int,
    "EEA_MAX_PAYLOAD_BYTES": _env_int,
    "EEA_DEFAULT_RATE_LIMIT_PER_MIN": _env_int,
    "EEA_KV_DSN": _env_str,
    "EEA_CORS_ALLOW_ALL": _env_bool,
    "EEA_ENABLE_DOCS": _env_bool,
    "EEA_LOG_LEVEL": _env_str,
}


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """
    Build Settings from defaults, optional YAML, environment, then explicit
    overrides (highest priority).

    Priority:
      1. Settings defaults (in-code).
      2. YAML file pointed to by EEA_CONFIG_PATH.
      3. Environment variables (EEA_*).
      4. ``overrides`` passed by the caller.

    ``schema_version`` is fixed per deployment and never read from env.
    """
    merged: Dict[str, Any] = {}
    merged.update(_load_yaml_mapping(os.environ.get("EEA_CONFIG_PATH", "").strip()))

    for env_name, parser in _ENV_OVERRIDES.items():
        key = env_name[len("EEA_"):].lower()
        if env_name in os.environ:
            merged[key] = parser(env_name, merged.get(key, Settings.model_fields[key].default))

    secret = os.environ.get("EEA_SIGNING_KEY", "")
    if secret:
        merged["signing_key"] = secret

    if overrides:
        merged.update(overrides)

    merged.pop("schema_version", None)

    raw_key = merged.get("signing_key")
    if isinstance(raw_key, SecretStr):
        raw_key = raw_key.get_secret_value()
    if not raw_key:
        raise ConfigError("EEA_SIGNING_KEY is required")

    try:
        return Settings(**merged)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc
