# src/wg_provision/wireguard.py
from __future__ import annotations
import logging
import os
import shutil
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import ConfigWriteError, KeyGenerationError, ServiceControlError
from .models import PeerRecord, Settings


logger = logging.getLogger(__name__)

BACKUP_TIME_FORMAT = "%Y%m%d_%H%M%S"
KEEPALIVE = 25


def _run(cmd: List[str], input: Optional[str] = None) -> str:
    logger.debug("Running %s", " ".join(cmd))
    proc = subprocess.run(cmd, input=input, capture_output=True, text=True, check=True)
    return proc.stdout.strip()


# ---------- Key generation ----------

def _wg(wg: str, *args: str, input: Optional[str] = None) -> str:
    cmd = [wg, *args]
    try:
        out = _run(cmd, input=input)
    except FileNotFoundError as e:
        raise KeyGenerationError(f"'{wg}' not found, is wireguard-tools installed?") from e
    except OSError as e:
        raise KeyGenerationError(f"Cannot run '{wg}': {e}") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise KeyGenerationError(f"'{' '.join(cmd)}' exited with {e.returncode}: {stderr}") from e
    if not out:
        raise KeyGenerationError(f"'{' '.join(cmd)}' produced no output")
    return out


def generate_keypair(wg: str = "wg") -> tuple[str, str]:
    """
    Returns (private_key, public_key) using wg(8).
    """
    priv = _wg(wg, "genkey")
    # pubkey reads the private key on stdin
    pub = _wg(wg, "pubkey", input=priv + "\n")
    return priv, pub


def generate_preshared_key(wg: str = "wg") -> str:
    return _wg(wg, "genpsk")


def key_paths(peer_dir: Path, peer_name: str) -> tuple[Path, Path, Path]:
    return (
        peer_dir / f"{peer_name}_private.key",
        peer_dir / f"{peer_name}_public.key",
        peer_dir / f"{peer_name}.psk",
    )


def write_key_material(peer: PeerRecord, peer_dir: Path) -> None:
    priv_path, pub_path, psk_path = key_paths(peer_dir, peer.peer_name)
    try:
        _atomic_write(priv_path, peer.private_key + "\n", mode=0o600)
        _atomic_write(pub_path, peer.public_key + "\n", mode=0o600)
        _atomic_write(psk_path, peer.preshared_key + "\n", mode=0o600)
    except OSError as e:
        raise ConfigWriteError(f"Cannot write keys for '{peer.peer_name}': {e}") from e


# ---------- Config rendering ----------

def peer_address(peer: PeerRecord, settings: Settings) -> str:
    return f"{settings.prefix}.{peer.suffix}"


def render_server_peer(peer: PeerRecord, settings: Settings) -> str:
    lines = [
        "",  # blank line before each appended stanza
        "[Peer]",
        f"PublicKey = {peer.public_key}",
        f"PresharedKey = {peer.preshared_key}",
        f"AllowedIPs = {peer_address(peer, settings)}/32",
        f"Endpoint = {settings.internet_router}:{settings.port}",
    ]
    return "\n".join(lines) + "\n"


def render_client_conf(peer: PeerRecord, settings: Settings, server_public_key: str) -> str:
    lines = [
        "[Interface]",
        f"Address = {peer_address(peer, settings)}/32",
        f"PrivateKey = {peer.private_key}",
        f"DNS = {settings.dns}",
        "",
        "[Peer]",
        f"PublicKey = {server_public_key}",
        f"PresharedKey = {peer.preshared_key}",
        f"PersistentKeepalive = {KEEPALIVE}",
        f"AllowedIPs = 0.0.0.0/0, {settings.internal_network}, ::/0",
        f"Endpoint = {settings.ddns}:{settings.port}",
    ]
    return "\n".join(lines) + "\n"


def read_server_public_key(path: Path) -> str:
    try:
        key = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigWriteError(f"Cannot read server public key {path}: {e}") from e
    if not key:
        raise ConfigWriteError(f"Server public key file {path} is empty")
    return key


# ---------- File writes ----------

def _atomic_write(path: Path, content: str, mode: Optional[int] = None) -> None:
    """
    Writes content next to path then renames it into place, so a crash never
    leaves a half-written file behind.
    """
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def backup_path(path: Path, peer_name: str, now: Optional[datetime] = None) -> Path:
    stamp = (now or datetime.now()).strftime(BACKUP_TIME_FORMAT)
    return path.with_name(f"{path.name}.{stamp}.{peer_name}")


def backup_server_conf(path: Path, peer_name: str, now: Optional[datetime] = None) -> Path:
    dest = backup_path(path, peer_name, now)
    try:
        shutil.copy2(path, dest)
    except OSError as e:
        raise ConfigWriteError(f"Cannot back up {path} to {dest}: {e}") from e
    logger.info("Backed up %s to %s", path, dest)
    return dest


def append_server_peer(path: Path, stanza: str) -> None:
    try:
        current = path.read_text(encoding="utf-8")
        mode = path.stat().st_mode & 0o7777
        _atomic_write(path, current + stanza, mode=mode)
    except OSError as e:
        raise ConfigWriteError(f"Cannot append peer to {path}: {e}") from e


def write_client_conf(path: Path, text: str) -> None:
    try:
        _atomic_write(path, text, mode=0o600)
    except OSError as e:
        raise ConfigWriteError(f"Cannot write client config {path}: {e}") from e


# ---------- Service control ----------

def _systemctl(action: str, unit: str) -> None:
    try:
        _run(["systemctl", action, unit])
    except FileNotFoundError as e:
        raise ServiceControlError("systemctl not found") from e
    except OSError as e:
        raise ServiceControlError(f"Cannot run systemctl: {e}") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise ServiceControlError(f"systemctl {action} {unit} failed: {stderr}") from e


def stop_service(settings: Settings) -> None:
    logger.info("Stopping WireGuard interface %s", settings.interface)
    _systemctl("stop", settings.unit)


def start_service(settings: Settings) -> None:
    logger.info("Restarting WireGuard interface %s", settings.interface)
    _systemctl("start", settings.unit)
