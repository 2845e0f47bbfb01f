"""
Configuration loader for the flow runtime.
Reads settings from YAML file with environment variable substitution.

Path: $FLOW_RUNTIME_CONFIG, else config/settings.yaml next to this module.
Unknown keys in a section are ignored; missing keys keep their defaults.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional, TypeVar

import structlog
import yaml

logger = structlog.get_logger()

PERSISTENCE_ERROR_MODES = ("log", "raise")
WAIT_UNITS = ("seconds", "minutes", "hours", "days")


@dataclass
class RuntimeConfig:
    persist_before_step: bool = True       # cursor saved before a step runs (at-least-once),
                                           # else on the last finished step (at-most-once)
    condition_fallback: bool = True        # unlabeled edge used when no true/false edge matches
    persistence_errors: str = "log"        # "log" | "raise"
    default_agent_id: str = ""             # used by assign_conversation when no agent is set
    admin_email: str = "admin@example.com"
    default_wait_duration: int = 5
    default_wait_unit: str = "minutes"
    max_steps_per_call: int = 100          # a single call stops after this many steps

    def __post_init__(self):
        if self.persistence_errors not in PERSISTENCE_ERROR_MODES:
            raise ValueError(
                f"runtime.persistence_errors must be one of {PERSISTENCE_ERROR_MODES}, "
                f"got {self.persistence_errors!r}"
            )
        if self.default_wait_unit not in WAIT_UNITS:
            raise ValueError(f"runtime.default_wait_unit must be one of {WAIT_UNITS}")
        if self.max_steps_per_call < 1:
            raise ValueError("runtime.max_steps_per_call must be at least 1")


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./flow_runtime.db"          # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                      # "sql" | "memory" | "file"
    store_file_dir: str = "./data"                     # directory for file backend
    echo: bool = False
    pool_size: int = 10                                # ignored for SQLite
    max_overflow: int = 20
    pool_timeout_s: int = 30
    pool_recycle_s: int = 1800


@dataclass
class Settings:
    app_name: str = "FlowRuntime"
    debug: bool = False
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)


_settings: Optional[Settings] = None
_ENV_VAR = re.compile(r'\$\{(\w+)\}')
_Section = TypeVar("_Section")


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} with the environment value; unset variables stay literal."""
    return _ENV_VAR.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _load_section(cls: type[_Section], raw: Optional[dict], name: str) -> _Section:
    raw = raw or {}
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        logger.warning("settings_unknown_keys", section=name, keys=unknown)
    return cls(**{k: v for k, v in raw.items() if k in known})


def load_settings(config_path: Optional[str] = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "FLOW_RUNTIME_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()
    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            raw = _process_values(yaml.safe_load(f) or {})
        settings = Settings(
            app_name=raw.get("app_name", settings.app_name),
            debug=raw.get("debug", settings.debug),
            runtime=_load_section(RuntimeConfig, raw.get("runtime"), "runtime"),
            database=_load_section(DatabaseConfig, raw.get("database"), "database"),
        )
    else:
        logger.debug("settings_file_missing", path=str(path))

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
