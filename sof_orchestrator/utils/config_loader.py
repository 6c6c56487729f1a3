from __future__ import annotations

import logging
import os
import threading
from copy import deepcopy
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_cache_lock = threading.Lock()
_cached: dict[str, Any] | None = None
_cached_path: str | None = None


def _project_root() -> Path:
    # sof_orchestrator/utils/config_loader.py -> sof_orchestrator/utils -> sof_orchestrator -> project root
    return Path(__file__).resolve().parents[2]


def default_config_path() -> Path:
    env_path = os.getenv("SOF_CONFIG_PATH")
    if env_path:
        return Path(env_path)
    return _project_root() / "config" / "config.yaml"


def _apply_env_overrides(cfg: dict[str, Any]) -> None:
    """
    Override selected YAML settings with environment variables.

    Contract addresses stay in YAML; only operational knobs are overridable here.
    """
    network = cfg.setdefault("network", {})
    if os.getenv("SOF_NETWORK"):
        network["name"] = os.environ["SOF_NETWORK"]
    if os.getenv("SOF_RPC_URL"):
        network["rpc_url"] = os.environ["SOF_RPC_URL"]
    if os.getenv("SOF_CHAIN_ID"):
        network["chain_id"] = int(os.environ["SOF_CHAIN_ID"])

    trading = cfg.setdefault("trading", {})
    if os.getenv("SOF_CONFIRMATION_TIMEOUT_SECONDS"):
        trading["confirmation_timeout_seconds"] = float(os.environ["SOF_CONFIRMATION_TIMEOUT_SECONDS"])
    if os.getenv("SOF_REFRESH_DELAY_SECONDS"):
        trading["refresh_delay_seconds"] = float(os.environ["SOF_REFRESH_DELAY_SECONDS"])

    lifecycle = cfg.setdefault("lifecycle", {})
    if os.getenv("SOF_POLL_INTERVAL_SECONDS"):
        lifecycle["poll_interval_seconds"] = float(os.environ["SOF_POLL_INTERVAL_SECONDS"])


def validate_config(cfg: dict[str, Any]) -> None:
    """Fail fast if the configuration is missing required sections or keys."""
    required_top = ["network", "contracts", "trading", "lifecycle"]
    missing = [k for k in required_top if k not in cfg]
    if missing:
        raise ValueError(f"Missing required config sections: {', '.join(missing)}")

    network = cfg.get("network") or {}
    for k in ["rpc_url", "chain_id"]:
        if k not in network:
            raise ValueError(f"Missing network.{k} in config")

    contracts = cfg.get("contracts") or {}
    for k in ["sof_token", "raffle"]:
        if not contracts.get(k):
            raise ValueError(f"Missing contracts.{k} in config")

    trading = cfg.get("trading") or {}
    timeout = trading.get("confirmation_timeout_seconds", 60)
    if float(timeout) <= 0:
        raise ValueError("trading.confirmation_timeout_seconds must be > 0")
    if int(trading.get("confirmations", 1)) < 1:
        raise ValueError("trading.confirmations must be >= 1")


def load_config(config_path: str | Path | None = None, *, force_reload: bool = False) -> dict[str, Any]:
    """
    Load the YAML config once and reuse it across the process.

    - Reads `config/config.yaml` by default (or `SOF_CONFIG_PATH`).
    - Applies environment overrides for a small set of operational settings.
    - Returns a deep copy so callers can safely mutate local copies.
    """
    global _cached, _cached_path

    path = Path(config_path) if config_path else default_config_path()
    path_str = str(path.resolve())

    with _cache_lock:
        if not force_reload and _cached is not None and _cached_path == path_str:
            return deepcopy(_cached)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with path.open("r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}

        if not isinstance(cfg, dict):
            raise ValueError(f"Config must be a YAML mapping (dict); got {type(cfg).__name__}")

        _apply_env_overrides(cfg)
        validate_config(cfg)

        _cached = cfg
        _cached_path = path_str
        logger.info("Loaded config from %s", path_str)
        return deepcopy(cfg)
