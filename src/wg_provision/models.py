# src/wg_provision/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional


DEFAULT_NAMES = ["alpha", "bravo", "charlie", "delta", "echo", "foxtrot", "golf", "hotel"]


@dataclass
class Settings:
    names: List[str] = field(default_factory=lambda: list(DEFAULT_NAMES))
    start_at: int = 1                  # 1-based index into names
    quantity: int = 1
    prefix: str = "10.10.10"           # first three octets of the VPN network
    server_address: Optional[str] = None   # defaults to "<prefix>.1/24"
    dns: str = "8.8.8.8"
    ddns: str = "my.ddns-domain.org"
    port: int = 50000                  # port forwarded on the internet router
    interface: str = "wg0"
    server_public_key_file: Path = Path("/etc/wireguard/publickey")
    internal_network: str = "192.168.0.0/24"
    internet_router: str = "192.168.0.1"
    config_dir: Path = Path("/etc/wireguard")
    peers_root: Optional[Path] = None  # defaults to "<config_dir>/<interface>_peers"
    wg_binary: str = "wg"
    service_unit: Optional[str] = None  # defaults to "wg-quick@<interface>"
    verify_server_config: bool = True

    @property
    def server_conf_path(self) -> Path:
        return Path(self.config_dir) / f"{self.interface}.conf"

    @property
    def peers_dir(self) -> Path:
        if self.peers_root is not None:
            return Path(self.peers_root)
        return Path(self.config_dir) / f"{self.interface}_peers"

    @property
    def unit(self) -> str:
        return self.service_unit or f"wg-quick@{self.interface}"

    @property
    def server_suffix(self) -> int:
        """Last octet of the server's own VPN address, never handed to a peer."""
        address = self.server_address or f"{self.prefix}.1/24"
        return int(address.split("/")[0].rsplit(".", 1)[1])


@dataclass(frozen=True)
class Allocation:
    ordinal: int
    suffix: int

    def advance(self, reserved_suffix: int = 1) -> Allocation:
        suffix = self.suffix + 1
        if suffix == reserved_suffix:
            suffix += 1
        return Allocation(self.ordinal + 1, suffix)


@dataclass
class PeerRecord:
    ordinal: int
    name: str
    suffix: int
    private_key: str
    public_key: str
    preshared_key: str

    @property
    def peer_name(self) -> str:
        # ex "3_charlie"
        return f"{self.ordinal}_{self.name}"


@dataclass
class PeerOutcome:
    peer_name: str
    ok: bool
    address: Optional[str] = None
    error: Optional[Exception] = None
    image_error: Optional[Exception] = None   # non-fatal
    cleanup_error: Optional[Exception] = None  # peer dir left behind after a failure


@dataclass
class BatchResult:
    outcomes: List[PeerOutcome] = field(default_factory=list)
    restart_error: Optional[Exception] = None

    @property
    def succeeded(self) -> List[PeerOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[PeerOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def ok(self) -> bool:
        return not self.failed and self.restart_error is None
