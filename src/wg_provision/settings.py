# src/wg_provision/settings.py
from __future__ import annotations
import json
from pathlib import Path
from typing import Optional
from .errors import SettingsError
from .models import Settings


DEFAULT_SETTINGS_PATH = Path("wg-provision.json")

_PATH_KEYS = ("server_public_key_file", "config_dir", "peers_root")


def settings_to_dict(settings: Settings) -> dict:
    return {
        "names": list(settings.names),
        "start_at": settings.start_at,
        "quantity": settings.quantity,
        "prefix": settings.prefix,
        "server_address": settings.server_address,
        "dns": settings.dns,
        "ddns": settings.ddns,
        "port": settings.port,
        "interface": settings.interface,
        "server_public_key_file": str(settings.server_public_key_file),
        "internal_network": settings.internal_network,
        "internet_router": settings.internet_router,
        "config_dir": str(settings.config_dir),
        "peers_root": str(settings.peers_root) if settings.peers_root else None,
        "wg_binary": settings.wg_binary,
        "service_unit": settings.service_unit,
        "verify_server_config": settings.verify_server_config,
    }


def dict_to_settings(data: dict) -> Settings:
    if not isinstance(data, dict):
        raise SettingsError("Settings must be a JSON object")

    known = set(settings_to_dict(Settings()))
    unknown = sorted(set(data) - known)
    if unknown:
        raise SettingsError(f"Unknown settings: {', '.join(unknown)}")

    values = dict(data)
    for key in _PATH_KEYS:
        if values.get(key) is not None:
            values[key] = Path(values[key])

    return Settings(**values)


def load_settings(path: Optional[Path] = None) -> Settings:
    path = path or DEFAULT_SETTINGS_PATH
    if not path.exists():
        raise SettingsError(f"Settings file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SettingsError(f"Invalid JSON in {path}: {e}") from e
    return dict_to_settings(data)


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    path = path or DEFAULT_SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings_to_dict(settings)
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
