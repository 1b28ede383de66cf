# src/wg_provision/provision.py
from __future__ import annotations
import fcntl
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from . import wireguard
from .errors import (
    AllocationError,
    ConfigWriteError,
    EncodingError,
    KeyGenerationError,
    ProvisionError,
    ServiceControlError,
    SettingsError,
)
from .ipam import MAX_SUFFIX, next_allocation, verify_peers_registered
from .models import Allocation, BatchResult, PeerOutcome, PeerRecord, Settings
from .qr import render_qr_svg


logger = logging.getLogger(__name__)


def select_names(settings: Settings) -> List[str]:
    """
    Names for this batch: `quantity` entries starting at the 1-based `start_at`.
    """
    start = settings.start_at - 1
    end = start + settings.quantity
    if start < 0 or settings.quantity < 1 or end > len(settings.names):
        raise SettingsError(
            f"Cannot take {settings.quantity} name(s) from position {settings.start_at} "
            f"of a list of {len(settings.names)}"
        )
    return settings.names[start:end]


@contextmanager
def peers_lock(peers_root: Path) -> Iterator[None]:
    lock_path = peers_root.with_name(f"{peers_root.name}.lock")
    try:
        lock_fd = lock_path.open("w")
    except OSError as e:
        raise ProvisionError(f"Cannot open lock file {lock_path}: {e}") from e
    with lock_fd:
        try:
            fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise ProvisionError(f"Another run holds {lock_path}") from e
        try:
            yield
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)


def provision_peer(
    settings: Settings,
    allocation: Allocation,
    name: str,
    server_public_key: str,
) -> PeerOutcome:
    """
    Keys -> client config -> server stanza -> QR image, for one peer.

    Key material is generated in memory before anything touches the disk.
    A write failure removes the peer directory so nothing that looks
    complete is left behind. The server config is mutated last.
    """
    peer_name = f"{allocation.ordinal}_{name}"
    address = f"{settings.prefix}.{allocation.suffix}"
    outcome = PeerOutcome(peer_name=peer_name, ok=False, address=address)

    if allocation.suffix > MAX_SUFFIX:
        outcome.error = AllocationError(f"No free address left for '{peer_name}'")
        logger.error("%s", outcome.error)
        return outcome

    try:
        logger.info("Generating peer keys for '%s'", peer_name)
        priv, pub = wireguard.generate_keypair(settings.wg_binary)
        logger.info("Generating peer PSK for '%s'", peer_name)
        psk = wireguard.generate_preshared_key(settings.wg_binary)
    except KeyGenerationError as e:
        logger.error("Key generation failed for '%s': %s", peer_name, e)
        outcome.error = e
        return outcome

    peer = PeerRecord(
        ordinal=allocation.ordinal,
        name=name,
        suffix=allocation.suffix,
        private_key=priv,
        public_key=pub,
        preshared_key=psk,
    )

    peer_dir = settings.peers_dir / peer_name
    conf_path = peer_dir / f"{peer_name}.conf"
    try:
        logger.info("Creating directory for peer '%s'", peer_name)
        try:
            peer_dir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise ConfigWriteError(f"Cannot create {peer_dir}: {e}") from e

        wireguard.write_key_material(peer, peer_dir)

        logger.info("Creating config for '%s'", peer_name)
        conf_text = wireguard.render_client_conf(peer, settings, server_public_key)
        wireguard.write_client_conf(conf_path, conf_text)

        server_conf = settings.server_conf_path
        wireguard.backup_server_conf(server_conf, peer_name)
        wireguard.append_server_peer(server_conf, wireguard.render_server_peer(peer, settings))
    except ConfigWriteError as e:
        logger.error("Config write failed for '%s': %s", peer_name, e)
        outcome.error = e
        if peer_dir.exists():
            try:
                shutil.rmtree(peer_dir)
            except OSError as cleanup:
                logger.error("Could not remove %s, remove it by hand: %s", peer_dir, cleanup)
                outcome.cleanup_error = cleanup
        return outcome

    outcome.ok = True
    try:
        render_qr_svg(conf_text, peer_dir / f"{peer_name}.svg")
    except EncodingError as e:
        logger.error("QR code not generated for '%s': %s", peer_name, e)
        outcome.image_error = e

    logger.info("Completed config for '%s' (%s)", peer_name, address)
    return outcome


def provision_batch(settings: Settings, manage_service: bool = True) -> BatchResult:
    """
    Allocation, service stop and lock errors are fatal and raised before any
    file is changed. Per-peer errors are collected in the result, and the
    service is always restarted once it was stopped.
    """
    names = select_names(settings)
    peers_root = settings.peers_dir
    try:
        peers_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise AllocationError(f"Cannot create peers directory {peers_root}: {e}") from e

    result = BatchResult()
    with peers_lock(peers_root):
        if settings.verify_server_config:
            verify_peers_registered(peers_root, settings.server_conf_path)
        allocation = next_allocation(peers_root, reserved_suffix=settings.server_suffix)
        server_public_key = wireguard.read_server_public_key(settings.server_public_key_file)

        if manage_service:
            wireguard.stop_service(settings)

        try:
            for name in names:
                outcome = provision_peer(settings, allocation, name, server_public_key)
                result.outcomes.append(outcome)
                # a leftover directory keeps its ordinal
                if outcome.ok or outcome.cleanup_error:
                    allocation = allocation.advance(settings.server_suffix)
        finally:
            if manage_service:
                result.restart_error = _restart(settings)

    return result


def _restart(settings: Settings) -> Optional[ServiceControlError]:
    try:
        wireguard.start_service(settings)
    except ServiceControlError as e:
        logger.error("Could not restart %s: %s", settings.unit, e)
        return e
    return None
