# src/wg_provision/ipam.py
from __future__ import annotations
import ipaddress
import logging
import re
from pathlib import Path
from typing import List, Set, Tuple

from .errors import AllocationError
from .models import Allocation


logger = logging.getLogger(__name__)

MAX_SUFFIX = 254

_PEER_DIR_RE = re.compile(r"^([1-9][0-9]*)_(.+)$")


def parse_peer_dir_name(name: str) -> Tuple[int, str]:
    """
    "10_bravo" -> (10, "bravo")
    """
    m = _PEER_DIR_RE.match(name)
    if not m:
        raise AllocationError(f"Peer directory '{name}' is not named <ordinal>_<name>")
    return int(m.group(1)), m.group(2)


def list_peer_dirs(peers_root: Path) -> List[Tuple[int, Path]]:
    """
    Peer directories sorted by their numeric ordinal (9_x before 10_y).
    Plain files in the peers root are ignored.
    """
    if not peers_root.exists():
        return []
    try:
        entries = [p for p in peers_root.iterdir() if p.is_dir()]
    except OSError as e:
        raise AllocationError(f"Cannot read peers directory {peers_root}: {e}") from e

    dirs = [(parse_peer_dir_name(p.name)[0], p) for p in entries]
    seen: Set[int] = set()
    for ordinal, p in dirs:
        if ordinal in seen:
            raise AllocationError(f"Duplicate peer ordinal {ordinal} in {peers_root}")
        seen.add(ordinal)
    return sorted(dirs, key=lambda d: d[0])


def client_conf_path(peer_dir: Path) -> Path:
    return peer_dir / f"{peer_dir.name}.conf"


def read_address_suffix(conf_path: Path) -> int:
    """
    Last octet of the [Interface] Address, ex "Address = 10.10.10.5/32" -> 5
    """
    try:
        text = conf_path.read_text(encoding="utf-8")
    except OSError as e:
        raise AllocationError(f"Cannot read client config {conf_path}: {e}") from e

    for line in text.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "Address":
            try:
                iface = ipaddress.ip_interface(value.strip())
            except ValueError as e:
                raise AllocationError(f"Bad Address in {conf_path}: {value.strip()}") from e
            if iface.version != 4:
                raise AllocationError(f"Address in {conf_path} is not IPv4: {value.strip()}")
            return int(str(iface.ip).rsplit(".", 1)[1])

    raise AllocationError(f"No Address line in {conf_path}")


def next_allocation(peers_root: Path, reserved_suffix: int = 1) -> Allocation:
    dirs = list_peer_dirs(peers_root)

    if not dirs:
        ordinal, suffix = 1, 1
    else:
        ordinal = dirs[-1][0] + 1
        suffix = max(read_address_suffix(client_conf_path(p)) for _, p in dirs) + 1

    # the server's own address is never handed out
    if suffix == reserved_suffix:
        suffix += 1

    if suffix > MAX_SUFFIX:
        raise AllocationError(f"No free address left (next suffix would be {suffix})")

    logger.debug("Next allocation: ordinal=%d suffix=%d", ordinal, suffix)
    return Allocation(ordinal=ordinal, suffix=suffix)


# ---------- Consistency with the server config ----------

def registered_public_keys(server_conf_path: Path) -> Set[str]:
    try:
        text = server_conf_path.read_text(encoding="utf-8")
    except OSError as e:
        raise AllocationError(f"Cannot read server config {server_conf_path}: {e}") from e

    keys = set()
    section = None
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].lower()
            continue
        key, sep, value = line.partition("=")
        if sep and section == "peer" and key.strip() == "PublicKey":
            keys.add(value.strip())
    return keys


def verify_peers_registered(peers_root: Path, server_conf_path: Path) -> None:
    """
    Every peer directory must have its public key in the server config,
    otherwise the next allocation cannot be trusted.
    """
    registered = registered_public_keys(server_conf_path)
    missing = []
    for _, peer_dir in list_peer_dirs(peers_root):
        key_path = peer_dir / f"{peer_dir.name}_public.key"
        try:
            public_key = key_path.read_text(encoding="utf-8").strip()
        except OSError:
            missing.append(peer_dir.name)
            continue
        if public_key not in registered:
            missing.append(peer_dir.name)

    if missing:
        raise AllocationError(
            f"Peers not found in {server_conf_path}: {', '.join(missing)}"
        )
