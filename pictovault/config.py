import logging
import os

from .constants import ARASAAC_API_BASE, ARASAAC_STATIC_BASE, ASSET_PUBLIC_PREFIX, DEFAULT_LICENSE
from .paths import get_data_dir
from .utils import clamp

logger = logging.getLogger("PictoVault")

ENV_PREFIX = "PICTOVAULT_"

DEFAULT_CONFIG = {
    "host": "0.0.0.0",
    "port": 8080,
    "data_dir": "",
    "db_path": "",
    "asset_dir": "",
    "asset_public_prefix": ASSET_PUBLIC_PREFIX,
    "origin_api_base": ARASAAC_API_BASE,
    "origin_static_base": ARASAAC_STATIC_BASE,
    "origin_timeout": 12,
    "user_agent": "PictoVault/1.0 (+https://localhost)",
    "license": DEFAULT_LICENSE,
    "search_limit": 60,
    "fulltext_min_token_len": 2,
    "fulltext_min_query_len": 4,
    "prefetch_default_enabled": False,
    "prefetch_idle_minutes": 20,
    "prefetch_batch_size": 50,
    "prefetch_interval_seconds": 60,
    "prefetch_language": "en",
}

MAX_IDLE_MINUTES = 24 * 60
MAX_BATCH_SIZE = 2000
MIN_INTERVAL_SECONDS = 10


def _parse_bool(raw, default):
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _parse_positive_int(key, raw, default):
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, key.upper(), raw)
        return default
    return value if value > 0 else default


def config_from_env(environ=None):
    """Read ``PICTOVAULT_<KEY>`` overrides for every key in DEFAULT_CONFIG."""
    environ = os.environ if environ is None else environ
    out = {}
    for key, default in DEFAULT_CONFIG.items():
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        if isinstance(default, bool):
            out[key] = _parse_bool(raw, default)
        elif isinstance(default, int):
            out[key] = _parse_positive_int(key, raw, default)
        else:
            out[key] = raw.strip()
    return out


def normalize_config(config):
    cfg = {**DEFAULT_CONFIG, **(config or {})}
    cfg["data_dir"] = cfg["data_dir"] or get_data_dir()
    cfg["db_path"] = cfg["db_path"] or os.path.join(cfg["data_dir"], "pictovault.db")
    cfg["asset_dir"] = cfg["asset_dir"] or os.path.join(cfg["data_dir"], "assets", "pictograms")
    cfg["asset_public_prefix"] = "/" + str(cfg["asset_public_prefix"]).strip("/")
    cfg["origin_api_base"] = str(cfg["origin_api_base"]).rstrip("/")
    cfg["origin_static_base"] = str(cfg["origin_static_base"]).rstrip("/")
    cfg["prefetch_idle_minutes"] = clamp(int(cfg["prefetch_idle_minutes"]), 1, MAX_IDLE_MINUTES)
    cfg["prefetch_batch_size"] = clamp(int(cfg["prefetch_batch_size"]), 1, MAX_BATCH_SIZE)
    cfg["prefetch_interval_seconds"] = max(MIN_INTERVAL_SECONDS, int(cfg["prefetch_interval_seconds"]))
    cfg["fulltext_min_token_len"] = max(1, int(cfg["fulltext_min_token_len"]))
    cfg["fulltext_min_query_len"] = max(1, int(cfg["fulltext_min_query_len"]))
    cfg["search_limit"] = max(1, int(cfg["search_limit"]))
    return cfg


def load_config(overrides=None, environ=None):
    merged = config_from_env(environ)
    merged.update(overrides or {})
    return normalize_config(merged)
