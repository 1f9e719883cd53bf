from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from model_combiner.providers.openrouter_provider import DEFAULT_BASE_URL


@dataclass
class RuntimeEnv:
    openrouter_api_key: str | None


@dataclass
class AppConfig:
    gateway_name: str
    base_url: str
    app_title: str
    referer: str
    request_timeout_seconds: float
    state_db_path: str
    max_conversations: int
    auto_load_recent: bool
    log_level: str
    log_consumers: list | None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        gateway_name=str(config.get("Gateway", "openrouter")).strip().lower(),
        base_url=str(config.get("BaseUrl", DEFAULT_BASE_URL)),
        app_title=str(config.get("AppTitle", "AI Model Combiner")),
        referer=str(config.get("Referer", "")),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 60)),
        state_db_path=str(config.get("StateDbPath", ".model_combiner/state.db")),
        max_conversations=int(config.get("MaxConversations", 100)),
        auto_load_recent=_to_bool(config.get("AutoLoadRecent", True), default=True),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        openrouter_api_key=os.environ.get("OPENROUTER_API_KEY") or None,
    )
