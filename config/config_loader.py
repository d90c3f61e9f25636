# =========================================
# 📄 File: config/config_loader.py
# Purpose: Load the YAML run config, substitute ${ENV_VARS}, apply defaults,
#          validate (including the schema tree), and build the DB URL
# =========================================

import os                                # Used to resolve ${VAR} placeholders and LOG_LEVEL
import re                                # Used to find and replace ${VAR} patterns inside YAML text
import sys                               # Used to exit early with a clear error message on invalid config
from typing import Any, Dict, Optional   # Type hints for better readability and tooling

import yaml                              # Safe YAML parsing (install: PyYAML)
from sqlalchemy.engine import URL        # Builds driver URLs from the connection section

from sqltojson.etl.schema import ConfigError, Schema

DEFAULT_CONFIG_PATH = "sqltojson.yaml"
DEFAULT_DATA_FILE = "data.json"
DEFAULT_MAPPING_FILE = "mapping.json"
DEFAULT_WORKERS = 10
DEFAULT_MAX_RETRIES = 3

# YAML key (lower-cased) -> normalized key used by the pipeline
_KEY_ALIASES = {"maxretries": "max_retries", "max_retries": "max_retries", "loglevel": "log_level"}


def _fail(message: str) -> None:
    print(f"❌ {message}", file=sys.stderr)   # Clear error message
    sys.exit(1)                               # Fail fast; nothing has run yet


def _substitute_env_placeholders(yaml_text: str) -> str:
    """
    Replace ${VAR} placeholders in YAML text with their environment variable values.
    If an env var is missing, mark it as <MISSING:VAR> to fail validation cleanly.
    """
    pattern = re.compile(r"\$\{([^}^{]+)\}")
    def repl(match):
        var_name = match.group(1)                              # Extract VAR name from ${VAR}
        return os.getenv(var_name, f"<MISSING:{var_name}>")    # Return env value or a sentinel
    return pattern.sub(repl, yaml_text)


def _load_yaml_file(path: str) -> Dict[str, Any]:
    """
    Read a YAML file from disk, perform ${VAR} substitution, and parse it to a dict.
    """
    if not os.path.exists(path):
        _fail(f"Could not open config file: {path}")

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    substituted = _substitute_env_placeholders(raw)

    try:
        cfg = yaml.safe_load(substituted)
    except yaml.YAMLError as e:               # Catch YAML syntax errors
        _fail(f"Error reading config file {path}: {e}")

    if not isinstance(cfg, dict):
        _fail(f"Error reading config file {path}: top level must be a mapping")

    return cfg


def _normalize(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Lower-case top-level keys and fill in defaults."""
    cfg: Dict[str, Any] = {}
    for key, value in raw.items():
        k = str(key).lower()
        cfg[_KEY_ALIASES.get(k, k)] = value

    files = cfg.get("files") or {}
    cfg["files"] = {
        "data": files.get("data") or DEFAULT_DATA_FILE,
        "mapping": files.get("mapping") or DEFAULT_MAPPING_FILE,
    }

    cfg.setdefault("workers", DEFAULT_WORKERS)
    if not cfg.get("connections"):
        cfg["connections"] = cfg["workers"]
    cfg.setdefault("max_retries", DEFAULT_MAX_RETRIES)
    cfg["log_level"] = os.getenv("LOG_LEVEL", cfg.get("log_level") or "INFO").upper()
    return cfg


def _validate_config(cfg: Dict[str, Any]) -> None:
    """
    Validate presence of required keys, numeric limits and the schema tree.
    On success cfg["schema"] holds the validated Schema object.
    """
    required_top = ["index", "type", "schema"]
    missing_top = [k for k in required_top if k not in cfg or cfg[k] in (None, "")]
    if missing_top:
        _fail(f"Missing top-level config keys: {', '.join(missing_top)}")

    for k in ("workers", "connections", "max_retries"):
        if not isinstance(cfg[k], int) or isinstance(cfg[k], bool) or cfg[k] < 1:
            _fail(f"Config key '{k}' must be a positive integer, got {cfg[k]!r}")

    if not cfg.get("url") and not (cfg.get("connection") or {}).get("driver"):
        _fail("Missing database settings: set 'url' or 'connection.driver'")

    if "MISSING:" in str(cfg.get("url", "")) or "MISSING:" in str(cfg.get("connection", "")):
        _fail("Database settings contain unresolved ${VAR} placeholders")

    try:
        schema = Schema.from_dict(cfg["schema"])
        if not schema.type:
            schema.type = cfg["type"]
        schema.validate()
    except ConfigError as e:
        _fail(f"Config failed validation: {e}")

    if not schema.sql:
        _fail("Config failed validation: the root schema has no 'sql'")

    cfg["schema"] = schema


def get_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Public API: load YAML from ``path`` (or SQLTOJSON_CONFIG, or
    ./sqltojson.yaml), apply defaults, validate, return the config dict.
    """
    path = path or os.getenv("SQLTOJSON_CONFIG", DEFAULT_CONFIG_PATH)
    cfg = _normalize(_load_yaml_file(path))
    _validate_config(cfg)
    cfg["url"] = build_db_url(cfg)
    return cfg


def build_db_url(cfg: Dict[str, Any]):
    """
    Helper to build a SQLAlchemy URL from cfg: the ``url`` string as-is, or
    one assembled from connection.driver + connection.params.
    """
    if cfg.get("url"):
        return cfg["url"]

    conn = cfg["connection"]
    params = dict(conn.get("params") or {})
    port = params.pop("port", None)
    return URL.create(
        drivername=conn["driver"],
        username=params.pop("user", None),
        password=params.pop("password", None),
        host=params.pop("host", None),
        port=int(port) if port not in (None, "") else None,
        database=params.pop("database", None) or params.pop("name", None),
        query={k: str(v) for k, v in params.items()},   # Anything left goes on the query string
    )
