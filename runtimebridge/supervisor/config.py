"""Bridge settings loaded from a JSON config file plus environment overrides."""

from __future__ import annotations

import json
import logging
import os
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger("runtimebridge.supervisor.config")

BRIDGE_DIR = Path.home() / ".runtimebridge"
CONFIG_PATH = BRIDGE_DIR / "config.json"
AUTH_STORE_PATH = BRIDGE_DIR / "auth.json"

DEFAULT_RUNTIME_COMMAND = "pi --mode rpc"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7780
ALLOWED_RESTART_MODES = {"spawn_count", "consecutive_crashes"}
ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}
TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class BridgeSettings:
    """Runtime bridge settings; immutable once the app is built."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    runtime_command: str = DEFAULT_RUNTIME_COMMAND
    require_pairing: bool = True
    auth_store_path: Path = AUTH_STORE_PATH
    call_timeout_seconds: float = 60.0
    kill_grace_seconds: float = 1.5
    keepalive_seconds: float = 15.0
    status_interval_seconds: float = 8.0
    restart_base_seconds: float = 1.0
    restart_max_seconds: float = 30.0
    restart_mode: str = "spawn_count"
    probe_host: str = "127.0.0.1"
    probe_ports: dict[str, int] = field(default_factory=dict)
    log_level: str = "INFO"

    @property
    def runtime_argv(self) -> list[str]:
        return shlex.split(self.runtime_command)


def parse_flag(raw_value: str | None, *, default: bool) -> bool:
    """Parse a boolean-ish flag; unknown or empty values keep the default."""
    normalized = (raw_value or "").strip().lower()
    if normalized in TRUTHY:
        return True
    if normalized in FALSY:
        return False
    return default


def parse_probes(raw_value: Any) -> dict[str, int]:
    """Parse ``name=port`` pairs (comma separated string or mapping)."""
    if raw_value is None or raw_value == "":
        return {}
    items: list[tuple[str, Any]]
    if isinstance(raw_value, Mapping):
        items = list(raw_value.items())
    elif isinstance(raw_value, str):
        items = []
        for chunk in raw_value.split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            if "=" not in chunk:
                raise ValueError(f"probe entry must be name=port: {chunk}")
            name, port = chunk.split("=", 1)
            items.append((name, port))
    else:
        raise ValueError("probes must be object or name=port list")
    probes: dict[str, int] = {}
    for name, port in items:
        probe_name = str(name).strip()
        if not probe_name:
            raise ValueError("probe name must be non-empty")
        try:
            port_value = int(str(port).strip())
        except ValueError as exc:
            raise ValueError(f"invalid probe port for {probe_name}") from exc
        if not 0 < port_value < 65536:
            raise ValueError(f"probe port out of range for {probe_name}")
        probes[probe_name] = port_value
    return probes


def validate_settings(settings: BridgeSettings) -> BridgeSettings:
    """Validate settings ranges and normalize enum-like fields."""
    if not settings.runtime_argv:
        raise ValueError("runtime_command must be non-empty")
    if not 0 < int(settings.port) < 65536:
        raise ValueError("port out of range")
    for name in (
        "call_timeout_seconds",
        "kill_grace_seconds",
        "keepalive_seconds",
        "status_interval_seconds",
        "restart_base_seconds",
        "restart_max_seconds",
    ):
        if float(getattr(settings, name)) <= 0:
            raise ValueError(f"{name} must be positive")
    if settings.restart_max_seconds < settings.restart_base_seconds:
        raise ValueError("restart_max_seconds must be >= restart_base_seconds")
    restart_mode = settings.restart_mode.strip().lower()
    if restart_mode not in ALLOWED_RESTART_MODES:
        raise ValueError(f"unsupported restart_mode: {restart_mode}")
    log_level = settings.log_level.strip().upper()
    if log_level not in ALLOWED_LOG_LEVELS:
        raise ValueError(f"unsupported log_level: {log_level}")
    return replace(
        settings,
        port=int(settings.port),
        restart_mode=restart_mode,
        log_level=log_level,
        auth_store_path=Path(settings.auth_store_path).expanduser(),
    )


_FLOAT_FIELDS = {
    "call_timeout_seconds",
    "kill_grace_seconds",
    "keepalive_seconds",
    "status_interval_seconds",
    "restart_base_seconds",
    "restart_max_seconds",
}

_ENV_FIELDS = {
    "RUNTIME_BRIDGE_HOST": "host",
    "RUNTIME_BRIDGE_PORT": "port",
    "RUNTIME_BRIDGE_COMMAND": "runtime_command",
    "RUNTIME_BRIDGE_AUTH_STORE": "auth_store_path",
    "RUNTIME_BRIDGE_CALL_TIMEOUT": "call_timeout_seconds",
    "RUNTIME_BRIDGE_KEEPALIVE_SECONDS": "keepalive_seconds",
    "RUNTIME_BRIDGE_STATUS_INTERVAL_SECONDS": "status_interval_seconds",
    "RUNTIME_BRIDGE_RESTART_MODE": "restart_mode",
    "RUNTIME_BRIDGE_LOG_LEVEL": "log_level",
}


def _coerce(name: str, value: Any) -> Any:
    if name == "port":
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError("port must be integer") from exc
    if name in _FLOAT_FIELDS:
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{name} must be number") from exc
    if name == "auth_store_path":
        return Path(str(value)).expanduser()
    if name == "probe_ports":
        return parse_probes(value)
    if name == "require_pairing":
        if isinstance(value, bool):
            return value
        return parse_flag(str(value), default=True)
    if name == "runtime_command":
        if isinstance(value, list) and all(isinstance(part, str) for part in value):
            return shlex.join(value)
        if not isinstance(value, str):
            raise ValueError("runtime_command must be a string or list of strings")
        return value
    return str(value)


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        logger.warning("Ignoring config file %s: expected JSON object", path)
        return {}
    return raw


def load_settings(
    path: Path = CONFIG_PATH,
    environ: Mapping[str, str] | None = None,
) -> BridgeSettings:
    """Load settings from disk, apply ``RUNTIME_BRIDGE_*`` overrides, validate."""
    env = os.environ if environ is None else environ
    known = set(BridgeSettings.__dataclass_fields__)
    overrides: dict[str, Any] = {}
    for key, value in _read_config_file(path).items():
        if key in known:
            overrides[key] = _coerce(key, value)

    for env_name, field_name in _ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is not None and raw.strip():
            overrides[field_name] = _coerce(field_name, raw.strip())
    if "RUNTIME_BRIDGE_REQUIRE_PAIRING" in env:
        current = overrides.get("require_pairing", True)
        overrides["require_pairing"] = parse_flag(env["RUNTIME_BRIDGE_REQUIRE_PAIRING"], default=current)
    if env.get("RUNTIME_BRIDGE_PROBES") is not None:
        overrides["probe_ports"] = parse_probes(env["RUNTIME_BRIDGE_PROBES"])

    return validate_settings(BridgeSettings(**overrides))
