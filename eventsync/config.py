import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from eventsync.errors import ConfigurationError
from eventsync.models import FetchOptions

_DEFAULT_CONFIG_PATH = Path("config.toml")
_DEFAULT_ENV_PATH = Path("secrets")

_OPTION_KEYS = (
    "categories", "max_pages", "max_items", "fetch_details",
    "request_delay_ms", "page_size", "timeout",
)


def load(path: Path = _DEFAULT_CONFIG_PATH, env_path: Path = _DEFAULT_ENV_PATH) -> dict[str, Any]:
    """Load config from TOML, then overlay any secrets from the secrets file."""
    try:
        with open(path, "rb") as f:
            cfg = tomllib.load(f)
    except OSError as exc:
        raise ConfigurationError(f"cannot read config {path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"invalid config {path}: {exc}") from exc
    _load_env(env_path, cfg)
    return cfg


def _load_env(env_path: Path, cfg: dict) -> None:
    """
    Parse a dotenv-style file and inject values into the config dict.

    Supported variable names:
      TICKETMASTER_API_KEY  -> cfg["sources"]["ticketmaster"]["api_key"]
      EVENTSYNC_WEBHOOK_URL -> cfg["notifications"]["webhook_url"]

    Shell environment variables take precedence over file values.
    """
    # Pick up anything already set in the shell first
    _apply_env_vars(cfg)

    if not env_path.exists():
        return

    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            # Shell environment takes precedence over the secrets file
            if key not in os.environ:
                os.environ[key] = value

    _apply_env_vars(cfg)


def _apply_env_vars(cfg: dict) -> None:
    if v := os.environ.get("TICKETMASTER_API_KEY"):
        cfg.setdefault("sources", {}).setdefault("ticketmaster", {})["api_key"] = v
    if v := os.environ.get("EVENTSYNC_WEBHOOK_URL"):
        cfg.setdefault("notifications", {})["webhook_url"] = v


def get_database_path(cfg: dict) -> Path:
    return Path(cfg.get("database", {}).get("path", "data/events.db"))


def get_ingest(cfg: dict) -> dict:
    return cfg.get("ingest", {})


def get_sources(cfg: dict) -> dict[str, dict]:
    """Return the sources section, filtering to only enabled sources."""
    sources = cfg.get("sources", {})
    enabled = get_ingest(cfg).get("sources")
    return {
        key: s for key, s in sources.items()
        if s.get("enabled", True) and (enabled is None or key in enabled)
    }


def get_source_options(source_cfg: dict, overrides: Optional[dict] = None) -> FetchOptions:
    """FetchOptions for one source: config values, then CLI overrides that are set."""
    values = {k: source_cfg[k] for k in _OPTION_KEYS if k in source_cfg}
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    if "categories" in values:
        values["categories"] = list(values["categories"])
    try:
        return FetchOptions(**values)
    except TypeError as exc:
        raise ConfigurationError(f"bad source options: {exc}") from exc
