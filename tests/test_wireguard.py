from datetime import datetime

import pytest

from wg_provision import wireguard
from wg_provision.errors import ConfigWriteError, KeyGenerationError, ServiceControlError
from wg_provision.models import PeerRecord, Settings


def _peer(**overrides) -> PeerRecord:
    values = dict(
        ordinal=3,
        name="charlie",
        suffix=4,
        private_key="PRIV=",
        public_key="PUB=",
        preshared_key="PSK=",
    )
    values.update(overrides)
    return PeerRecord(**values)


def test_generate_keypair_feeds_private_key_to_pubkey(fake_wg):
    priv, pub = wireguard.generate_keypair()
    assert priv == "PRIV1="
    assert pub == "PUB-PRIV1="
    assert fake_wg.calls == [["wg", "genkey"], ["wg", "pubkey"]]


def test_generate_preshared_key(fake_wg):
    assert wireguard.generate_preshared_key("awg") == "PSK0="
    assert fake_wg.calls == [["awg", "genpsk"]]


def test_missing_wg_binary(tmp_path):
    with pytest.raises(KeyGenerationError, match="not found"):
        wireguard.generate_keypair(str(tmp_path / "no-such-wg"))


def test_failing_wg(fake_wg):
    fake_wg.fail_genkey_on.add(1)
    with pytest.raises(KeyGenerationError, match="boom"):
        wireguard.generate_keypair()


def test_empty_wg_output(monkeypatch):
    monkeypatch.setattr(wireguard, "_run", lambda cmd, input=None: "")
    with pytest.raises(KeyGenerationError, match="no output"):
        wireguard.generate_preshared_key()


def test_write_key_material(tmp_path):
    wireguard.write_key_material(_peer(), tmp_path)
    assert (tmp_path / "3_charlie_private.key").read_text() == "PRIV=\n"
    assert (tmp_path / "3_charlie_public.key").read_text() == "PUB=\n"
    assert (tmp_path / "3_charlie.psk").read_text() == "PSK=\n"
    assert (tmp_path / "3_charlie_private.key").stat().st_mode & 0o777 == 0o600


def test_render_server_peer():
    assert wireguard.render_server_peer(_peer(), Settings()) == (
        "\n"
        "[Peer]\n"
        "PublicKey = PUB=\n"
        "PresharedKey = PSK=\n"
        "AllowedIPs = 10.10.10.4/32\n"
        "Endpoint = 192.168.0.1:50000\n"
    )


def test_render_client_conf():
    settings = Settings(dns="1.1.1.1", ddns="vpn.example.org", port=51820,
                        internal_network="192.168.50.0/24")
    assert wireguard.render_client_conf(_peer(), settings, "SERVERPUB=") == (
        "[Interface]\n"
        "Address = 10.10.10.4/32\n"
        "PrivateKey = PRIV=\n"
        "DNS = 1.1.1.1\n"
        "\n"
        "[Peer]\n"
        "PublicKey = SERVERPUB=\n"
        "PresharedKey = PSK=\n"
        "PersistentKeepalive = 25\n"
        "AllowedIPs = 0.0.0.0/0, 192.168.50.0/24, ::/0\n"
        "Endpoint = vpn.example.org:51820\n"
    )


def test_read_server_public_key(tmp_path):
    path = tmp_path / "publickey"
    path.write_text("  KEY=\n")
    assert wireguard.read_server_public_key(path) == "KEY="

    path.write_text("\n")
    with pytest.raises(ConfigWriteError):
        wireguard.read_server_public_key(path)

    with pytest.raises(ConfigWriteError):
        wireguard.read_server_public_key(tmp_path / "missing")


def test_backup_name_and_content(tmp_path):
    conf = tmp_path / "wg0.conf"
    conf.write_text("[Interface]\n")
    dest = wireguard.backup_server_conf(conf, "3_charlie", now=datetime(2022, 3, 20, 9, 5, 7))
    assert dest.name == "wg0.conf.20220320_090507.3_charlie"
    assert dest.read_text() == "[Interface]\n"


def test_backup_of_missing_file(tmp_path):
    with pytest.raises(ConfigWriteError):
        wireguard.backup_server_conf(tmp_path / "wg0.conf", "1_a")


def test_append_keeps_existing_content_and_mode(tmp_path):
    conf = tmp_path / "wg0.conf"
    original = "[Interface]\nAddress = 10.10.10.1/24\n\n[Peer]\nPublicKey = OLD=\n"
    conf.write_text(original)
    conf.chmod(0o640)

    stanza = wireguard.render_server_peer(_peer(), Settings())
    wireguard.append_server_peer(conf, stanza)

    assert conf.read_text() == original + stanza
    assert conf.stat().st_mode & 0o777 == 0o640
    assert [p.name for p in tmp_path.iterdir()] == ["wg0.conf"]


def test_systemctl_failures(fake_wg):
    fake_wg.fail_systemctl.add("stop")
    with pytest.raises(ServiceControlError):
        wireguard.stop_service(Settings())

    wireguard.start_service(Settings(interface="wg1", service_unit=None))
    assert fake_wg.calls[-1] == ["systemctl", "start", "wg-quick@wg1"]


def test_wg_that_cannot_be_executed(monkeypatch):
    def denied(cmd, input=None):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(wireguard, "_run", denied)
    with pytest.raises(KeyGenerationError, match="Cannot run"):
        wireguard.generate_keypair()
    with pytest.raises(ServiceControlError, match="Cannot run"):
        wireguard.start_service(Settings())
