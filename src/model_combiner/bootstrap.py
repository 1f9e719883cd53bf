from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from model_combiner.app_config import AppConfig, RuntimeEnv
from model_combiner.controller import AppController
from model_combiner.logging_config import setup_logging
from model_combiner.provider import create_gateway
from model_combiner.storage import KeyValueStore, StateStore


@dataclass
class AppRuntime:
    controller: AppController
    kv_store: KeyValueStore
    state_db_path: str
    log_descriptions: list[str]


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    db_path = Path(app.state_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    kv_store = KeyValueStore(str(db_path))
    store = StateStore(kv_store, max_conversations=app.max_conversations)

    gateway = create_gateway(
        app.gateway_name,
        base_url=app.base_url,
        timeout_seconds=app.request_timeout_seconds,
        app_title=app.app_title,
        referer=app.referer,
    )
    controller = AppController(gateway, store, auto_load_recent=app.auto_load_recent)
    await controller.initialize(seed_api_key=env.openrouter_api_key)

    return AppRuntime(
        controller=controller,
        kv_store=kv_store,
        state_db_path=str(db_path),
        log_descriptions=log_descriptions,
    )
