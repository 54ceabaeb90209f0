from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

PROJECT_ROOT = Path(os.environ.get("DSASYNC_HOME") or Path.cwd())
RUNTIME_DIR = PROJECT_ROOT / "runtime"
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config.yaml"
DEFAULT_CONFIG_TEMPLATE_PATH = PROJECT_ROOT / "config.yaml.example"

DAILY_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "DSA_HOST": ("dsa", "host"),
    "DSA_AUTH_TOKEN": ("dsa", "auth_token"),
    "DSA_USERNAME": ("dsa", "username"),
    "DSA_PASSWORD": ("dsa", "password"),
    "DSA_BASE_COLLECTION_ID": ("dsa", "base_collection_id"),
    "DSA_FOLDER_NAME": ("dsa", "folder_name"),
    "DSASYNC_LOCAL_ROOT": ("sync", "local_root"),
    "DSASYNC_LOG_LEVEL": ("logging", "level"),
}

SECRET_FIELDS = ("password", "auth_token")


class DSAConfig(BaseModel):
    host: str = "http://localhost:8080"
    auth_token: str = ""
    username: str = ""
    password: str = ""
    base_collection_id: str = ""
    folder_name: str = "lcdr"
    timeout_sec: int = Field(default=60, ge=1, le=3600)
    chunk_size_mb: int = Field(default=64, ge=1, le=1024)


class SyncConfig(BaseModel):
    # Empty means PROJECT_ROOT / dsa.folder_name.
    local_root: str = ""
    structure_file_name: str = "tma-structure.xlsx"
    schedule_enabled: bool = True
    # Local wall-clock time (HH:MM) of the daily run.
    daily_run_time: str = "01:00"

    @field_validator("daily_run_time")
    @classmethod
    def _check_daily_run_time(cls, value: str) -> str:
        value = (value or "").strip()
        if not DAILY_TIME_RE.match(value):
            raise ValueError(f"daily_run_time must be HH:MM, got {value!r}")
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = str(RUNTIME_DIR / "service.log")
    # 0 keeps a single unbounded file.
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=0)
    backup_count: int = Field(default=5, ge=0)


class DatabaseConfig(BaseModel):
    path: str = str(RUNTIME_DIR / "service.db")


class AppConfig(BaseModel):
    dsa: DSAConfig = Field(default_factory=DSAConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    web_bind_host: str = "127.0.0.1"
    web_port: int = 8765
    web_allowed_nets: list[str] = Field(default_factory=lambda: ["127.0.0.1/32", "::1/128"])

    def resolved_local_root(self) -> Path:
        raw = (self.sync.local_root or "").strip()
        if raw:
            return Path(raw).expanduser()
        return PROJECT_ROOT / self.dsa.folder_name


def apply_env_overrides(cfg: AppConfig, environ: dict[str, str] | None = None) -> list[str]:
    env = os.environ if environ is None else environ
    applied: list[str] = []
    for var, (section, field) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value == "":
            continue
        setattr(getattr(cfg, section), field, value)
        applied.append(var)
    return applied


def masked_dump(cfg: AppConfig) -> dict:
    data = cfg.model_dump()
    for key in SECRET_FIELDS:
        if data["dsa"].get(key):
            data["dsa"][key] = "***"
    return data


def ensure_runtime_dirs(cfg: AppConfig):
    Path(cfg.logging.file).parent.mkdir(parents=True, exist_ok=True)
    Path(cfg.database.path).parent.mkdir(parents=True, exist_ok=True)


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AppConfig:
    import yaml
    from dotenv import load_dotenv

    load_dotenv(PROJECT_ROOT / ".env", override=False)

    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        if DEFAULT_CONFIG_TEMPLATE_PATH.exists():
            try:
                template_text = DEFAULT_CONFIG_TEMPLATE_PATH.read_text(encoding="utf-8")
                data = yaml.safe_load(template_text) or {}
                cfg = AppConfig.model_validate(data)
                path.write_text(template_text, encoding="utf-8")
            except Exception:
                cfg = AppConfig()
                path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
        else:
            cfg = AppConfig()
            path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
    else:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        cfg = AppConfig.model_validate(data)

    # Env wins over the file but is never written back to it.
    apply_env_overrides(cfg)
    ensure_runtime_dirs(cfg)
    return cfg


def save_config(cfg: AppConfig, path: Path = DEFAULT_CONFIG_PATH):
    import yaml

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(cfg.model_dump(), allow_unicode=True, sort_keys=False), encoding="utf-8")
