import argparse
import logging
import sys
from pathlib import Path

from wg_provision.errors import ProvisionError
from wg_provision.ipam import client_conf_path, list_peer_dirs, next_allocation, read_address_suffix
from wg_provision.models import Settings
from wg_provision.provision import provision_batch
from wg_provision.qr import render_peer_qr
from wg_provision.settings import DEFAULT_SETTINGS_PATH, load_settings, save_settings


def _load(args) -> Settings:
    settings = load_settings(args.settings)
    if getattr(args, "start_at", None) is not None:
        settings.start_at = args.start_at
    if getattr(args, "quantity", None) is not None:
        settings.quantity = args.quantity
    return settings


# ---------------------------------------------------
# Command: init (default settings file)
# ---------------------------------------------------

def cmd_init(args):
    if args.settings.exists() and not args.force:
        print(f"[ERROR] {args.settings} already exists (use --force to overwrite).")
        return 1

    save_settings(Settings(), args.settings)
    print(f"[+] Settings written: {args.settings}")
    print("[!] Edit names, prefix, ddns and the network values before provisioning.")
    return 0


# ---------------------------------------------------
# Command: provision
# ---------------------------------------------------

def cmd_provision(args):
    settings = _load(args)
    result = provision_batch(settings, manage_service=not args.no_service)

    for o in result.outcomes:
        if o.ok:
            print(f"[+] {o.peer_name} ({o.address})")
            if o.image_error:
                print(f"[!] {o.peer_name}: QR code missing: {o.image_error}")
        else:
            print(f"[ERROR] {o.peer_name}: {o.error}")
            if o.cleanup_error:
                print(f"[!] {o.peer_name}: directory left behind: {o.cleanup_error}")

    if result.restart_error:
        print(f"[ERROR] Interface not restarted: {result.restart_error}")
        print(f"    sudo systemctl start {settings.unit}")

    print(f"[+] {len(result.succeeded)} peer(s) provisioned, {len(result.failed)} failed.")
    return 0 if result.ok else 1


# ---------------------------------------------------
# Command: next
# ---------------------------------------------------

def cmd_next(args):
    settings = _load(args)
    allocation = next_allocation(settings.peers_dir, reserved_suffix=settings.server_suffix)
    print(f"Ordinal : {allocation.ordinal}")
    print(f"Address : {settings.prefix}.{allocation.suffix}/32")
    return 0


# ---------------------------------------------------
# Command: list-peers
# ---------------------------------------------------

def cmd_list(args):
    settings = _load(args)
    dirs = list_peer_dirs(settings.peers_dir)

    print(f"=== Peers ({settings.peers_dir}) ===")
    if not dirs:
        print("No peers.")
        return 0

    for _, peer_dir in dirs:
        suffix = read_address_suffix(client_conf_path(peer_dir))
        print(f"- {peer_dir.name} ({settings.prefix}.{suffix})")
    return 0


# ---------------------------------------------------
# Command: generate-qr
# ---------------------------------------------------

def cmd_generate_qr(args):
    settings = _load(args)
    peer_dir = settings.peers_dir / args.name
    if not peer_dir.is_dir():
        print(f"[ERROR] Unknown peer: {args.name}")
        return 1

    path = render_peer_qr(peer_dir)
    print(f"[OK] QR code generated: {path}")
    return 0


# ---------------------------------------------------
# CLI / Parser
# ---------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wg-provision")
    parser.add_argument("--settings", type=Path, default=DEFAULT_SETTINGS_PATH)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    # init
    p_init = sub.add_parser("init")
    p_init.add_argument("--force", action="store_true")
    p_init.set_defaults(func=cmd_init)

    # provision
    p_prov = sub.add_parser("provision")
    p_prov.add_argument("--start-at", type=int)
    p_prov.add_argument("--quantity", type=int)
    p_prov.add_argument("--no-service", action="store_true",
                        help="do not stop/start the wg-quick unit")
    p_prov.set_defaults(func=cmd_provision)

    # next
    p_next = sub.add_parser("next")
    p_next.set_defaults(func=cmd_next)

    # list-peers
    p_list = sub.add_parser("list-peers")
    p_list.set_defaults(func=cmd_list)

    # generate-qr
    p_qr = sub.add_parser("generate-qr")
    p_qr.add_argument("name")
    p_qr.set_defaults(func=cmd_generate_qr)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except ProvisionError as e:
        print(f"[ERROR] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
