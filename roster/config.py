"""Configuration management for the student roster service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

_DEFAULT_NOTIFY_TIMEOUT = 5.0
_DEFAULT_SLOW_QUERY_MS = 1000


def _env_flag(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the roster database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "roster.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Path:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    return (Path(__file__).resolve().parent.parent / "config" / "roster.yaml").resolve(strict=False)


def parse_api_tokens(raw: str | Mapping[str, object] | None) -> Dict[str, int]:
    """Parse ``token:caller_id`` pairs into a lookup table.

    ``raw`` is either the comma separated environment form or the mapping
    form used in the YAML file.
    """

    if not raw:
        return {}

    if isinstance(raw, Mapping):
        items = [(str(token), value) for token, value in raw.items()]
    else:
        items = []
        for entry in str(raw).split(","):
            entry = entry.strip()
            if not entry:
                continue
            token, sep, caller = entry.rpartition(":")
            if not sep or not token.strip():
                raise ValueError(f"API token entries must look like 'token:caller_id', got {entry!r}")
            items.append((token, caller))

    tokens: Dict[str, int] = {}
    for token, caller in items:
        try:
            caller_id = int(str(caller).strip())
        except ValueError as exc:
            raise ValueError(f"Caller id for API token must be an integer, got {caller!r}") from exc
        if caller_id <= 0:
            raise ValueError("Caller id for API token must be positive")
        tokens[token.strip()] = caller_id
    return tokens


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the roster service."""

    database_path: Path
    api_tokens: Dict[str, int] = field(default_factory=dict)
    notify_url: Optional[str] = None
    notify_token: Optional[str] = None
    notify_timeout: float = _DEFAULT_NOTIFY_TIMEOUT
    slow_query_ms: int = _DEFAULT_SLOW_QUERY_MS
    debug: bool = False


def _load_yaml(config_path: Path) -> Dict[str, object]:
    if not config_path.is_file():
        return {}
    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("Configuration file must contain a mapping at the top level")
    return raw


def load_settings(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """Build :class:`Settings` from the YAML file overlaid with environment variables."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get("ROSTER_CONFIG"))
    raw = _load_yaml(config_path)

    notify_raw = raw.get("notifications") or {}
    if not isinstance(notify_raw, dict):
        raise ValueError("'notifications' must be a mapping")

    db_value = env.get("ROSTER_DB_PATH") or raw.get("database_path")
    tokens_value = env.get("ROSTER_API_TOKENS") or raw.get("api_tokens")
    notify_url = env.get("ROSTER_NOTIFY_URL") or notify_raw.get("url")
    notify_token = env.get("ROSTER_NOTIFY_TOKEN") or notify_raw.get("token")
    timeout_value = env.get("ROSTER_NOTIFY_TIMEOUT") or notify_raw.get("timeout")
    slow_value = env.get("ROSTER_SLOW_QUERY_MS") or raw.get("slow_query_ms")

    debug_env = env.get("ROSTER_DEBUG")
    debug = _env_flag(debug_env) if debug_env is not None else bool(raw.get("debug", False))

    return Settings(
        database_path=resolve_database_path(str(db_value) if db_value else None),
        api_tokens=parse_api_tokens(tokens_value),
        notify_url=str(notify_url).strip() if notify_url else None,
        notify_token=str(notify_token) if notify_token else None,
        notify_timeout=float(timeout_value) if timeout_value else _DEFAULT_NOTIFY_TIMEOUT,
        slow_query_ms=int(slow_value) if slow_value else _DEFAULT_SLOW_QUERY_MS,
        debug=debug,
    )


__all__ = [
    "Settings",
    "load_settings",
    "parse_api_tokens",
    "resolve_config_path",
    "resolve_database_path",
]
