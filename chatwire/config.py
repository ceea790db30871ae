"""
Config loader for chatwire.
Reads config.yaml once at startup and deep-merges it over built-in defaults.
Only the CLI and server wiring read config; the core receives resolved values.

Lookup order: explicit path → ./config.yaml → ~/.config/chatwire/config.yaml.
"""

import copy
import os
import re
import yaml
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

_LOCAL_CONFIG_PATH = Path("config.yaml")
_GLOBAL_CONFIG_PATH = Path.home() / ".config" / "chatwire" / "config.yaml"

PROVIDER_NAMES = ("ollama", "openrouter")

DEFAULT_CONFIG: dict = {
    "defaults": {"provider": "ollama"},
    "providers": {
        "ollama": {
            "url": "http://localhost:11434",
            "model": "llama3.2",
            "timeout": 120,
        },
        "openrouter": {
            "url": "https://openrouter.ai/api/v1",
            "model": "anthropic/claude-3.5-sonnet",
            "api_key": "${OPENROUTER_API_KEY}",
            "timeout": 60,
        },
    },
    "generation": {"temperature": None, "max_tokens": None},
    "session": {"name": ""},
    "storage": {"enabled": True, "sqlite_path": "./data/chatwire.db", "ttl": None},
    "relay": {"enabled": True, "max_queue": 256},
    "broadcast": {"sink_timeout": 5.0},
    "server": {"enabled": True, "host": "127.0.0.1", "port": 8765},
    "wiretap": {"enabled": False, "path": "./data/wire.jsonl"},
    "logging": {"level": "WARNING", "file": None},
}

_config: dict | None = None


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def find_config_path() -> Path | None:
    for candidate in (_LOCAL_CONFIG_PATH, _GLOBAL_CONFIG_PATH):
        if candidate.exists():
            return candidate
    return None


def validate_config(cfg: dict):
    """Raise ValueError if the provider settings cannot work."""
    provider = cfg.get("defaults", {}).get("provider")
    if provider not in PROVIDER_NAMES:
        raise ValueError(
            f"Invalid config: defaults.provider must be one of {', '.join(PROVIDER_NAMES)}"
        )
    for name in PROVIDER_NAMES:
        section = cfg.get("providers", {}).get(name) or {}
        if not section.get("url") or not section.get("model"):
            raise ValueError(f"Invalid config: providers.{name} needs url and model")


def load_config(path: Path | None = None, reload: bool = False) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None and not reload:
        return _config

    config_path = Path(path) if path else find_config_path()
    raw: dict = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config not found: {config_path}")
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

    cfg = _walk_and_resolve(_deep_merge(DEFAULT_CONFIG, raw))
    validate_config(cfg)
    _config = cfg
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config
