"""Configuration management for CKB."""

import copy
import os
from pathlib import Path
from typing import Any

import yaml


DEFAULT_CONFIG = {
    "storage_backend": "sql",
    "database_url": "sqlite:///~/.ckb/ckb.db",
    "log_level": "INFO",
    "server": {"host": "127.0.0.1", "port": 8080},
    "graph": {"hub_percentile": 90.0, "min_degree": 2, "neighborhood_depth": 2, "context_chars": 50},
    "clustering": {
        "default_algorithm": "label_propagation",
        "max_iterations": 100,
        "n_clusters": 8,
        "timeout_seconds": 60,
        "run_min_clearance": 4,
    },
    "audit": {"workers": 2},
}


def _find_config_file() -> Path | None:
    """Look for config.yaml in standard locations."""
    candidates = [
        Path.cwd() / "config" / "config.yaml",
        Path.cwd() / "config.yaml",
        Path.home() / ".ckb" / "config.yaml",
    ]
    for p in candidates:
        if p.exists():
            return p
    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration, merging defaults with file and env vars."""
    cfg = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path) if config_path else _find_config_file()
    if path and path.exists():
        with open(path) as f:
            file_cfg = yaml.safe_load(f) or {}
        _deep_merge(cfg, file_cfg)

    # Env overrides
    if backend := os.environ.get("CKB_STORAGE_BACKEND"):
        cfg["storage_backend"] = backend
    if url := os.environ.get("CKB_DATABASE_URL"):
        cfg["database_url"] = url
    if level := os.environ.get("CKB_LOG_LEVEL"):
        cfg["log_level"] = level.upper()

    cfg["database_url"] = _expand_sqlite_path(cfg["database_url"])
    return cfg


def _expand_sqlite_path(url: str) -> str:
    """Expand ~ in sqlite file URLs."""
    prefix = "sqlite:///"
    if url.startswith(prefix) and url[len(prefix):].startswith("~"):
        return prefix + str(Path(url[len(prefix):]).expanduser())
    return url


def _deep_merge(base: dict, override: dict) -> None:
    """Merge override into base in-place."""
    for k, v in override.items():
        if k in base and isinstance(base[k], dict) and isinstance(v, dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
