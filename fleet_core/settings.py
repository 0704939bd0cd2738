"""
File: fleet_core/settings.py
Purpose: Environment-backed configuration for the fleet command core.
Key responsibilities:
- Parse MySQL settings and store selection.
- Parse decision oracle, alert webhook and assignment parameters.
"""

from dataclasses import dataclass
import os


def _int_env(name: str, default: int = 0) -> int:
    """Parse an integer env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return int(raw)


def _float_env(name: str, default: float = 0.0) -> float:
    """Parse a float env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return float(raw)


def _optional_env(*names: str) -> str | None:
    """Return the first non-empty env var among names, else None."""
    for name in names:
        raw = os.getenv(name, "")
        if raw:
            return raw
    return None


@dataclass(frozen=True)
class Settings:
    """Fleet core configuration parsed from environment."""
    fleet_store: str = os.getenv("FLEET_STORE", "memory")
    mysql_host: str = os.getenv("MYSQL_HOST", "mysql")
    mysql_port: int = int(os.getenv("MYSQL_PORT", "3306"))
    mysql_user: str = os.getenv("MYSQL_USER", "arcc")
    mysql_password: str = os.getenv("MYSQL_PASSWORD", "arccpass")
    mysql_db: str = os.getenv("MYSQL_DB", "robotics_v1")
    oracle_api_key: str | None = _optional_env("ORACLE_API_KEY", "GEMINI_API_KEY")
    oracle_url: str = os.getenv(
        "ORACLE_URL",
        "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent",
    )
    oracle_temperature: float = _float_env("ORACLE_MODEL_TEMPERATURE", 0.3)
    oracle_max_tokens: int = _int_env("ORACLE_MAX_TOKENS", 2048)
    oracle_timeout_s: float = _float_env("ORACLE_TIMEOUT_S", 10.0)
    battery_threshold: float = _float_env("BATTERY_THRESHOLD", 20.0)
    alert_webhook_url: str | None = _optional_env("ALERT_WEBHOOK_URL", "DISCORD_WEBHOOK_URL")
    notify_timeout_s: float = _float_env("NOTIFY_TIMEOUT_S", 5.0)
    alert_log_capacity: int = _int_env("ALERT_LOG_CAPACITY", 50)
    scenario_seed: int | None = int(os.environ["SCENARIO_SEED"]) if os.getenv("SCENARIO_SEED") else None
    world_size: int = _int_env("WORLD_SIZE", 100)


settings = Settings()
