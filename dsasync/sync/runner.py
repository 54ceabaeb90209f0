from __future__ import annotations

import logging

from ..core.config import AppConfig, load_config
from ..providers.dsa.client import DSAClient
from ..providers.dsa.upload import MIB
from .engine import TreeSynchronizer
from .history import init_db


def log_func(level: str, module: str, message: str, detail: str | None = None):
    logging.getLogger(module).log(
        getattr(logging, level.upper(), logging.INFO),
        f"{message} {detail or ''}".strip(),
    )


def build_client(cfg: AppConfig) -> DSAClient:
    return DSAClient(
        host=cfg.dsa.host,
        username=cfg.dsa.username,
        password=cfg.dsa.password,
        auth_token=cfg.dsa.auth_token,
        timeout=int(cfg.dsa.timeout_sec),
        chunk_size=int(cfg.dsa.chunk_size_mb) * MIB,
    )


def build_synchronizer(cfg: AppConfig | None = None) -> tuple[AppConfig, TreeSynchronizer]:
    cfg = cfg or load_config()
    init_db(cfg.database.path)

    data = cfg.model_dump()
    data["sync"]["local_root"] = str(cfg.resolved_local_root())

    engine = TreeSynchronizer(data, cfg.database.path, build_client(cfg), log_func)
    return cfg, engine
