"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from livechat.log import get_logger

logger = get_logger(__name__)


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: list[str] = Field(default_factory=list)
    # Keys accepted on admin websocket and HTTP routes (X-API-Key header)
    admin_api_keys: list[str] = Field(default_factory=list)


class ChatConfig(BaseModel):
    dedup_capacity: int = 1000
    dedup_evict_batch: int = 100
    max_message_length: int = 500
    max_name_length: int = 50
    history_limit: int = 100
    preview_length: int = 50
    typing_timeout: float = 1.0
    default_visitor_name: str = "Guest"
    admin_display_name: str = "Support"
    offline_auto_reply: Optional[str] = (
        "Thank you for contacting us! We have received your message "
        "and will get back to you shortly."
    )


class StorageConfig(BaseModel):
    backend: Literal["memory", "json", "sqlite"] = "sqlite"
    db_path: str = "./data/livechat.db"
    json_path: str = "./data/chats.json"


class MaintenanceConfig(BaseModel):
    enabled: bool = True
    ghost_purge_interval_s: int = 3600
    ghost_max_age_s: int = 24 * 3600
    stale_sweep_interval_s: int = 60
    stale_timeout_s: int = 300


class ReconnectConfig(BaseModel):
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 10


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    server: ServerConfig = Field(default_factory=ServerConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    maintenance: MaintenanceConfig = Field(default_factory=MaintenanceConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def _usable_keys(keys: list) -> list[str]:
    """Strip blanks and any ${VAR} left behind by an unset environment variable."""
    usable = []
    for key in keys:
        key = str(key).strip()
        if not key:
            continue
        if _ENV_VAR_PATTERN.search(key):
            logger.warning("admin_key_unresolved", key=key)
            continue
        usable.append(key)
    return usable


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced as ${data_dir} by storage paths
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    # Comma-separated keys from a single env var are common in deployments
    keys = (data.get("server") or {}).get("admin_api_keys")
    if isinstance(keys, str):
        keys = keys.split(",")
    if isinstance(keys, list):
        data["server"]["admin_api_keys"] = _usable_keys(keys)

    return AppConfig(**data)
