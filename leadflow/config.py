"""
Configuration for the lead pipeline.

Everything can be overridden via environment variables (or a .env file).
"""

import os
from dotenv import load_dotenv

from leadflow.errors import ConfigError

load_dotenv()


def _get_bool(key: str, default: bool = False) -> bool:
    """Get a boolean from environment."""
    val = os.getenv(key, str(default)).lower()
    return val in ('true', '1', 'yes', 'on')


def _get_int(key: str, default: int) -> int:
    """Get an integer from environment."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_float(key: str, default: float) -> float:
    """Get a float from environment."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default


def _get_list(key: str, default: str = "") -> list:
    """Get a comma-separated list from environment."""
    val = os.getenv(key, default)
    return [x.strip() for x in val.split(",") if x.strip()]


# Relative to the working directory the CLI is run from
DEFAULT_DB_PATH = os.path.join("data", "leadflow.db")

LEAD_CONFIG = {
    # Storage
    'DB_PATH': os.getenv('LEADFLOW_DB_PATH', DEFAULT_DB_PATH),

    # Acquisition budget and pacing (seconds)
    'MAX_ACQUISITIONS_PER_DAY': _get_int('LEADFLOW_MAX_PER_DAY', 80),
    'MIN_DELAY_SECONDS': _get_float('LEADFLOW_MIN_DELAY', 3.0),
    'MAX_DELAY_SECONDS': _get_float('LEADFLOW_MAX_DELAY', 8.0),
    'DELAY_STDDEV_SECONDS': _get_float('LEADFLOW_DELAY_STDDEV', 1.5),
    'CSV_EXPORT_DIR': os.path.expanduser(os.getenv('LEADFLOW_CSV_DIR', '~/Downloads')),

    # Classification
    'CRITERIA_FILE': os.getenv('LEADFLOW_CRITERIA_FILE', 'criteria.md'),
    'QUALIFYING_DECISIONS': _get_list('LEADFLOW_QUALIFYING_DECISIONS', 'TIER_1,TIER_2,QUALIFIED'),
    'MIN_SCORE': _get_int('LEADFLOW_MIN_SCORE', 60),
    'MAX_PROSE_CHARS': _get_int('LEADFLOW_MAX_PROSE_CHARS', 500),
    'MAX_LIST_ITEMS': _get_int('LEADFLOW_MAX_LIST_ITEMS', 5),
    'MAX_LIST_ITEM_CHARS': _get_int('LEADFLOW_MAX_LIST_ITEM_CHARS', 100),
    'CLASSIFY_MAX_ATTEMPTS': _get_int('LEADFLOW_CLASSIFY_ATTEMPTS', 2),
    'CLASSIFY_WORKERS': _get_int('LEADFLOW_CLASSIFY_WORKERS', 1),

    # Anthropic classifier
    'ANTHROPIC_API_KEY': os.getenv('ANTHROPIC_API_KEY', ''),
    'ANTHROPIC_MODEL': os.getenv('LEADFLOW_ANTHROPIC_MODEL', 'claude-3-5-sonnet-20241022'),
    'ANTHROPIC_MAX_TOKENS': _get_int('LEADFLOW_ANTHROPIC_MAX_TOKENS', 1024),

    # Campaign service (HeyReach)
    'CAMPAIGN_API_KEY': os.getenv('HEYREACH_API_KEY', ''),
    'CAMPAIGN_BASE_URL': os.getenv('HEYREACH_BASE_URL', 'https://api.heyreach.io/api/public'),
    'CAMPAIGN_LIST_ID': os.getenv('HEYREACH_LIST_ID', ''),
    'CAMPAIGN_ID': os.getenv('HEYREACH_CAMPAIGN_ID', ''),
    'ACCEPTED_STATUS': os.getenv('HEYREACH_ACCEPTED_STATUS', 'ConnectionAccepted'),
    'PAGE_SIZE': _get_int('HEYREACH_PAGE_SIZE', 100),

    # Network and concurrency
    'REQUEST_TIMEOUT': _get_int('LEADFLOW_REQUEST_TIMEOUT', 30),
    'CLAIM_LEASE_SECONDS': _get_int('LEADFLOW_CLAIM_LEASE', 120),

    # Follow-up drafts
    'SENDER_NAME': os.getenv('LEADFLOW_SENDER_NAME', ''),
    'SENDER_COMPANY': os.getenv('LEADFLOW_SENDER_COMPANY', ''),

    # Scheduling
    'DAILY_RUN_TIME': os.getenv('LEADFLOW_DAILY_RUN_TIME', '09:00'),
}

# Human-readable names for required settings, used in error messages.
_SETTING_ENV_NAMES = {
    'ANTHROPIC_API_KEY': 'ANTHROPIC_API_KEY',
    'CAMPAIGN_API_KEY': 'HEYREACH_API_KEY',
    'CAMPAIGN_LIST_ID': 'HEYREACH_LIST_ID',
    'CAMPAIGN_ID': 'HEYREACH_CAMPAIGN_ID',
    'CRITERIA_FILE': 'LEADFLOW_CRITERIA_FILE',
}


def get_config() -> dict:
    """Get the pipeline configuration."""
    return LEAD_CONFIG.copy()


def missing_settings(*keys: str, config: dict = None) -> list[str]:
    """Return the env var names of required settings that are unset."""
    cfg = LEAD_CONFIG if config is None else config
    missing = []
    for key in keys:
        value = cfg.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(_SETTING_ENV_NAMES.get(key, key))
    return missing


def require(*keys: str, config: dict = None) -> None:
    """Raise ConfigError naming every required setting that is unset."""
    missing = missing_settings(*keys, config=config)
    if missing:
        raise ConfigError(f"Missing required settings: {', '.join(missing)}")


def numeric_id(value, key: str) -> int:
    """Parse a campaign/list id setting, raising ConfigError if it isn't a number."""
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        name = _SETTING_ENV_NAMES.get(key, key)
        raise ConfigError(f"Invalid {name}: {value!r} (expected a number)") from None
