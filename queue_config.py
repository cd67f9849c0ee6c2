from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError


class QueueConfig(BaseModel):
    app_name: str = Field(default="walkin_triage")
    app_env: str = Field(default="development")
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000)
    reload: bool = Field(default=True)
    authority_url: str = Field(default="", description="Base URL of the prioritization authority; empty disables it")
    authority_submit_path: str = Field(default="/predict/")
    authority_queue_path: str = Field(default="/queue")
    authority_timeout_seconds: float = Field(default=12.0, gt=0, le=60)
    reconcile_interval_seconds: float = Field(default=300.0, gt=0)
    log_level: str = Field(default="INFO")

    @property
    def authority_enabled(self) -> bool:
        return bool(self.authority_url.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def config_from_env() -> QueueConfig:
    """Build configuration from environment variables (and .env if present)."""
    load_dotenv()
    defaults = QueueConfig()
    try:
        return QueueConfig(
            app_name=os.getenv("APP_NAME", defaults.app_name),
            app_env=os.getenv("APP_ENV", defaults.app_env),
            host=os.getenv("HOST", defaults.host),
            port=int(os.getenv("PORT", str(defaults.port))),
            reload=_env_bool("RELOAD", defaults.reload),
            authority_url=os.getenv("AUTHORITY_URL", defaults.authority_url).strip(),
            authority_submit_path=os.getenv("AUTHORITY_SUBMIT_PATH", defaults.authority_submit_path),
            authority_queue_path=os.getenv("AUTHORITY_QUEUE_PATH", defaults.authority_queue_path),
            authority_timeout_seconds=float(
                os.getenv("AUTHORITY_TIMEOUT_SECONDS", str(defaults.authority_timeout_seconds))
            ),
            reconcile_interval_seconds=float(
                os.getenv("RECONCILE_INTERVAL_SECONDS", str(defaults.reconcile_interval_seconds))
            ),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level).strip().upper(),
        )
    except (ValueError, ValidationError) as e:
        raise ValueError(f"Invalid queue configuration in environment: {e}")


def load_queue_config(path: str | os.PathLike[str]) -> QueueConfig:
    p = Path(path)
    if not p.is_absolute():
        # resolve relative to current working directory
        p = Path.cwd() / p
    if not p.exists():
        raise FileNotFoundError(f"Queue config not found at: {p}")

    with p.open("r", encoding="utf-8") as f:
        raw = json.load(f)
    try:
        return QueueConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid queue config format: {e}")


def resolve_config(path: Optional[str] = None) -> QueueConfig:
    """Use the JSON file at `path` (or QUEUE_CONFIG_PATH) when set, else the environment."""
    load_dotenv()
    path = path or os.getenv("QUEUE_CONFIG_PATH")
    if path:
        return load_queue_config(path)
    return config_from_env()
