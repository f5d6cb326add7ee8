import os

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .logger import get_logger

logger = get_logger(__name__)

CONFIG_PATH = "config.yaml"

DEFAULTS = {
    "backup_root": "/etc/backups",
    "timezone": "UTC",
    "max_parallel_jobs": 10,
    "pg_dump_path": "pg_dump",
    "pg_restore_path": "pg_restore",
    "connect_timeout": 10,
    "auth_enabled": True,
    "jwt_expire_hours": 3600,
}

# setting name -> (environment variable, converter)
ENV_OVERRIDES = {
    "secret_key": ("SECRET_KEY", str),
    "database_url": ("DATABASE_URL", str),
    "backup_root": ("BACKUP_ROOT", str),
    "timezone": ("TZ", str),
    "max_parallel_jobs": ("MAX_PARALLEL_JOBS", int),
    "pg_dump_path": ("PG_DUMP_PATH", str),
    "pg_restore_path": ("PG_RESTORE_PATH", str),
    "connect_timeout": ("PG_CONNECT_TIMEOUT", int),
    "auth_enabled": ("AUTH_ENABLED", lambda v: v.strip().lower() in ("1", "true", "yes", "on")),
    "jwt_expire_hours": ("JWT_EXPIRE_HOURS", int),
}


def get_secret_key() -> str:
    """Return the process-wide secret used for key derivation and JWT signing."""
    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key:
        raise ConfigurationError("SECRET_KEY environment variable is not set")
    return secret_key


def load_config(config_path: str = CONFIG_PATH) -> dict:
    """
    Build the settings dict.

    Precedence, lowest first: built-in defaults, the `global` section of
    config.yaml, environment variables (a .env file is loaded first).
    """
    load_dotenv(".env")

    settings = dict(DEFAULTS)

    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            try:
                yaml_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                logger.error(f"Error parsing {config_path}: {e}")
                yaml_config = {}
        global_config = yaml_config.get("global", {}) or {}
        unknown = set(global_config) - set(DEFAULTS) - set(ENV_OVERRIDES)
        if unknown:
            logger.warning(f"Ignoring unknown settings in {config_path}: {sorted(unknown)}")
        for key, value in global_config.items():
            if key == "secret_key":
                logger.warning(f"secret_key in {config_path} is ignored, set SECRET_KEY in the environment.")
                continue
            if key in DEFAULTS or key in ENV_OVERRIDES:
                settings[key] = value
    else:
        logger.info(f"No {config_path} found, using defaults and environment.")

    for key, (env_var, convert) in ENV_OVERRIDES.items():
        raw = os.environ.get(env_var)
        if raw is None or raw == "":
            continue
        try:
            settings[key] = convert(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {raw!r}", original_error=e)

    logger.debug(f"Loaded settings: {sorted(k for k in settings if k != 'secret_key')}")
    return settings


def validate_config(settings: dict) -> None:
    """Refuse to serve without the secret key and the metadata store URL."""
    missing = [name for name in ("secret_key", "database_url") if not settings.get(name)]
    if missing:
        names = ", ".join(ENV_OVERRIDES[name][0] for name in missing)
        raise ConfigurationError(f"Missing required configuration: {names}")

    if int(settings.get("max_parallel_jobs", 0)) < 1:
        raise ConfigurationError("max_parallel_jobs must be at least 1")
