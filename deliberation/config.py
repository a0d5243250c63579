"""
Configuration loading and component wiring.

Configuration is a nested dict, YAML on disk, merged over ``DEFAULT_CONFIG``.
"""
import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from loguru import logger

from .backends import BackendManager, BackendType
from .backends.manager import UsageHook
from .utils import deep_merge

DEFAULT_CONFIG: Dict[str, Any] = {
    "council": {
        "participants": [],
        "chairman": None,
        "borda_scheme": "linear",
        "max_call_timeout": 60.0,
        "session_deadline": 300.0,
        "redact_identities": True,
        "collection_temperature": 0.7,
        "review_temperature": 0.3,
        "synthesis_temperature": 0.5,
        "max_tokens": 2048,
        "max_sessions": 1000,
    },
    "backends": {
        "openrouter": {
            "enabled": True,
            "primary": True,
            "base_url": "https://openrouter.ai/api/v1",
            "api_key_env": "OPENROUTER_API_KEY",
            "timeout": 120.0,
            "app_name": "Deliberation Engine",
            "models": [],
        },
        "ollama": {
            "enabled": False,
            "primary": False,
            "base_url": "http://localhost:11434",
            "timeout": 120.0,
            "models": [],
        },
    },
    "persistence": {
        "db_path": "data/council.db",
        "output_dir": None,
    },
    "budget": {
        "enabled": True,
        "per_session": 2.00,
        "daily": 10.00,
        "monthly": 200.00,
    },
    "logging": {
        "level": "INFO",
        "file": None,
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
}


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load ``path`` (if it exists) over the defaults.

    A missing file is not an error: the defaults alone describe a usable
    OpenRouter setup once the API key is in the environment.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if path is None:
        return config

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"{config_path} not found, using defaults")
        return config

    with open(config_path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{config_path}: top level must be a mapping")

    logger.debug(f"Loaded configuration from {config_path}")
    return deep_merge(config, loaded)


def resolve_api_key(backend_cfg: Dict[str, Any]) -> Optional[str]:
    """Explicit ``api_key`` wins over the environment variable."""
    if backend_cfg.get("api_key"):
        return backend_cfg["api_key"]
    env_var = backend_cfg.get("api_key_env")
    return os.environ.get(env_var) if env_var else None


def default_participants(config: Dict[str, Any]) -> List[str]:
    return list(config.get("council", {}).get("participants") or [])


async def build_backend_manager(
    config: Dict[str, Any],
    usage_hook: Optional[UsageHook] = None
) -> BackendManager:
    """Create and connect every enabled backend."""
    manager = BackendManager(usage_hook=usage_hook)
    backends_cfg = config.get("backends", {})

    openrouter = backends_cfg.get("openrouter", {})
    if openrouter.get("enabled", False):
        await manager.add_backend(
            "openrouter",
            BackendType.OPENROUTER,
            is_primary=openrouter.get("primary", False),
            models=openrouter.get("models"),
            base_url=openrouter.get("base_url", "https://openrouter.ai/api/v1"),
            api_key=resolve_api_key(openrouter),
            timeout=openrouter.get("timeout", 120.0),
            app_name=openrouter.get("app_name", "Deliberation Engine"),
            referer=openrouter.get("referer"),
        )

    ollama = backends_cfg.get("ollama", {})
    if ollama.get("enabled", False):
        await manager.add_backend(
            "ollama",
            BackendType.OLLAMA,
            is_primary=ollama.get("primary", False),
            models=ollama.get("models"),
            base_url=ollama.get("base_url", "http://localhost:11434"),
            timeout=ollama.get("timeout", 120.0),
        )

    if not manager.backends:
        logger.warning("No backend connected; every participant will be rejected")
    return manager
