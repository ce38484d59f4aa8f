"""Settings loader for Rollkeeper."""

from pathlib import Path
from typing import Any

import tomllib
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _toml_settings_source() -> dict[str, Any]:
    """Load settings from config.toml with keys mapped to Settings fields.

    This source has LOWER priority than env/.env so those can override TOML.
    """
    cfg_path = Path("config.toml")
    if not cfg_path.exists():
        return {}
    with cfg_path.open("rb") as f:
        t = tomllib.load(f)
    rolls_cfg = t.get("rolls", {}) or {}
    out: dict[str, Any] = {
        "env": t.get("app", {}).get("env", "dev"),
        # Visibility used when neither the caller nor a dialog picks one
        "default_roll_mode": rolls_cfg.get("default_roll_mode", "public"),
        "chat_sound": rolls_cfg.get("chat_sound"),
        # Logging config
        "logging_enabled": t.get("logging", {}).get("enabled", True),
        "logging_level": t.get("logging", {}).get("level", "INFO"),
        # Per-handler levels: strings INFO|DEBUG|WARNING|ERROR|CRITICAL|NONE
        # Backward-compatible: if console/to_file are bools, map True->level, False->NONE
        "logging_console": None,
        "logging_file": None,
        "logging_file_path": t.get("logging", {}).get("file_path", "logs/rollkeeper.jsonl"),
        "logging_max_bytes": t.get("logging", {}).get("max_bytes", 5_000_000),
        "logging_backup_count": t.get("logging", {}).get("backup_count", 5),
    }
    if rolls_cfg.get("seed") is not None:
        out["dice_seed"] = int(rolls_cfg["seed"])

    log_cfg = t.get("logging", {}) or {}
    console_val = log_cfg.get("console", None)
    file_val = log_cfg.get("to_file", None)
    overall = out["logging_level"]

    def _norm_level(v, default):
        if isinstance(v, str):
            return v.upper()
        if isinstance(v, bool):
            return default if v else "NONE"
        return default

    out["logging_console"] = _norm_level(console_val, overall)
    out["logging_file"] = _norm_level(file_val, overall)

    # Only set legacy booleans if TOML provided booleans to avoid validation errors
    if isinstance(console_val, bool):
        out["logging_to_console"] = console_val
    if isinstance(file_val, bool):
        out["logging_to_file"] = file_val

    return out


class Settings(BaseSettings):
    env: str = Field(default="dev")

    # --- Rolls ---
    default_roll_mode: str = "public"
    dice_seed: int | None = None
    chat_sound: str | None = None

    # --- Logging ---
    logging_enabled: bool = True
    logging_level: str = "INFO"
    logging_console: str = "INFO"
    logging_file: str = "INFO"
    logging_to_console: bool = True
    logging_to_file: bool = True
    logging_file_path: str = "logs/rollkeeper.jsonl"
    logging_max_bytes: int = 5_000_000
    logging_backup_count: int = 5

    model_config = SettingsConfigDict(
        env_prefix="ROLLKEEPER_",
        case_sensitive=False,
        env_file=".env",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Precedence (highest to lowest):
        # 1) init_settings (explicit overrides in code/tests)
        # 2) dotenv (.env in cwd)
        # 3) env_settings (OS env)
        # 4) TOML (config.toml in cwd)
        # 5) file_secret_settings
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            _toml_settings_source,
            file_secret_settings,
        )


def load_settings() -> Settings:
    return Settings()
