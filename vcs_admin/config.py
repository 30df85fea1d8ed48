import os
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

DOMAINS = ("status", "settings", "roster", "coalitions", "bans")


class Settings(BaseSettings):
    remote_base_url: str = "http://127.0.0.1:8080"
    remote_config_path: str = "/config/remote.yaml"
    remote_timeout_seconds: float = 10.0
    remote_max_retries: int = 3
    status_poll_seconds: float = 3.0
    settings_poll_seconds: float = 1.0
    roster_poll_seconds: float = 1.0
    coalitions_poll_seconds: float = 1.0
    bans_poll_seconds: float = 1.0
    notification_ttl_seconds: float = 8.0
    notification_tick_seconds: float = 1.0
    log_level: str = "INFO"
    push_bus_mode: str = "local"
    push_redis_url: str = ""
    push_redis_channel: str = "vcs:admin:events"
    push_redis_connect_timeout_seconds: float = 5.0
    events_keepalive_seconds: float = 15.0
    events_subscriber_queue_size: int = 200
    instance_id: str = os.getenv("HOSTNAME", "vcs-admin")

    host: str = "127.0.0.1"
    port: int = 8765

    model_config = {"env_prefix": "VCS_ADMIN_"}


settings = Settings()


def load_remote_config() -> dict:
    """Load optional remote overrides from YAML config.

    A missing file is not an error; the console then runs on env settings alone.
    """
    config_path = Path(settings.remote_config_path)
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def get_remote_url(config: dict) -> str:
    """Get the remote server base URL, preferring the YAML override."""
    remote = config.get("remote") or {}
    return str(remote.get("url") or settings.remote_base_url).rstrip("/")


def get_poll_interval(config: dict, domain: str) -> float:
    """Get the poll interval for a domain, preferring the YAML override."""
    if domain not in DOMAINS:
        raise KeyError(f"Unknown domain: {domain}")
    intervals = config.get("poll_intervals") or {}
    raw = intervals.get(domain)
    if raw is None:
        return float(getattr(settings, f"{domain}_poll_seconds"))
    return max(0.1, float(raw))
