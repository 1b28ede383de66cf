import subprocess
from pathlib import Path

import pytest

from wg_provision import wireguard
from wg_provision.models import Settings


SERVER_CONF = """[Interface]
Address = 10.10.10.1/24
ListenPort = 50000
PrivateKey = SERVERPRIVATEKEY
"""


class FakeWg:
    """Stands in for wg(8) and systemctl; records every command."""

    def __init__(self):
        self.calls = []
        self.genkey_count = 0
        self.fail_genkey_on = set()   # 1-based genkey call numbers that fail
        self.fail_systemctl = set()   # "stop" / "start"

    def __call__(self, cmd, input=None):
        self.calls.append(list(cmd))
        if cmd[0] == "systemctl":
            if cmd[1] in self.fail_systemctl:
                raise subprocess.CalledProcessError(1, cmd, stderr="unit failed")
            return ""
        action = cmd[1]
        if action == "genkey":
            self.genkey_count += 1
            if self.genkey_count in self.fail_genkey_on:
                raise subprocess.CalledProcessError(1, cmd, stderr="boom")
            return f"PRIV{self.genkey_count}="
        if action == "pubkey":
            return "PUB-" + input.strip()
        if action == "genpsk":
            return f"PSK{self.genkey_count}="
        raise AssertionError(f"unexpected command {cmd}")


@pytest.fixture
def fake_wg(monkeypatch):
    fake = FakeWg()
    monkeypatch.setattr(wireguard, "_run", fake)
    return fake


@pytest.fixture
def settings(tmp_path) -> Settings:
    config_dir = tmp_path / "wireguard"
    config_dir.mkdir()
    (config_dir / "wg0.conf").write_text(SERVER_CONF)
    (config_dir / "publickey").write_text("SERVERPUBLICKEY\n")
    return Settings(
        config_dir=config_dir,
        server_public_key_file=config_dir / "publickey",
    )


def make_peer(peers_root: Path, ordinal: int, name: str, suffix: int, prefix: str = "10.10.10") -> Path:
    peer_name = f"{ordinal}_{name}"
    peer_dir = peers_root / peer_name
    peer_dir.mkdir(parents=True)
    (peer_dir / f"{peer_name}.conf").write_text(
        f"[Interface]\nAddress = {prefix}.{suffix}/32\nPrivateKey = X\n"
    )
    (peer_dir / f"{peer_name}_public.key").write_text(f"PUB-{peer_name}\n")
    return peer_dir
