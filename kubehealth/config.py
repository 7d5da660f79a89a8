from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Lua health scripts
    script_timeout_seconds: float = 1.0  # wall-clock budget per script run
    script_hook_interval: int = 1000  # VM instructions between abort checks
    script_max_memory_bytes: int = 0  # 0 = no cap
    script_startup_timeout_seconds: float = 10.0  # worker process start-up, not counted in the budget

    # Evaluating an application's children in parallel
    max_workers: int = 4

    # Optional ConfigMap file for the CLI (argocd-cm style)
    customizations_file: str = ""

    # Logging
    log_level: str = "INFO"


settings = Settings()
