"""
Python-side storage configuration.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel


class LocalStoreConfig(BaseModel):
    directory: str = os.path.expanduser("~/.dropservices/store")


class RemoteDatabaseConfig(BaseModel):
    url: Optional[str] = None
    echo: bool = False


class StorageConfig(BaseModel):
    backend: Literal["memory", "local", "database"] = "memory"
    collection_prefix: str = "ds_"
    local: LocalStoreConfig = LocalStoreConfig()
    remote_database: RemoteDatabaseConfig = RemoteDatabaseConfig()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def load_storage_config(overrides: Optional[Dict[str, Any]] = None) -> StorageConfig:
    """
    Build the storage configuration from defaults, ``overrides`` and the
    environment, in increasing order of precedence.

    Without an explicit backend the database is picked when a URL is known,
    otherwise the local JSON store when a directory was configured, otherwise
    memory.
    """

    cfg = StorageConfig()
    storage = (overrides or {}).get("storage", {})

    local_cfg = storage.get("local", {})
    cfg.local = LocalStoreConfig(
        directory=os.getenv("DROPSERVICES_STORE_DIR", local_cfg.get("directory", cfg.local.directory)),
    )

    remote_cfg = storage.get("remote_database", {})
    cfg.remote_database = RemoteDatabaseConfig(
        url=os.getenv("DROPSERVICES_DATABASE_URL", remote_cfg.get("url", cfg.remote_database.url)),
        echo=_env_bool("DROPSERVICES_DATABASE_ECHO", remote_cfg.get("echo", cfg.remote_database.echo)),
    )

    backend = os.getenv("DROPSERVICES_STORE_BACKEND", storage.get("backend"))
    if backend is None:
        if cfg.remote_database.url:
            backend = "database"
        elif "DROPSERVICES_STORE_DIR" in os.environ or "directory" in local_cfg:
            backend = "local"
        else:
            backend = "memory"
    return StorageConfig(
        backend=backend,
        collection_prefix=os.getenv("DROPSERVICES_TABLE_PREFIX", storage.get("collection_prefix", cfg.collection_prefix)),
        local=cfg.local,
        remote_database=cfg.remote_database,
    )
