# src/wg_provision/qr.py
from __future__ import annotations
from pathlib import Path
from typing import cast

import qrcode
import qrcode.exceptions
from qrcode.image.svg import SvgPathImage

from .errors import EncodingError

# same level qrencode uses by default
ERROR_CORRECT_L: int = cast(int, qrcode.constants.ERROR_CORRECT_L)


def render_qr_svg(text: str, out_path: Path) -> Path:
    """
    Renders the full WireGuard client config text as an SVG QR code.
    """
    qr = qrcode.QRCode(
        version=None,  # automatic size
        error_correction=ERROR_CORRECT_L,
        box_size=10,
        border=4,
        image_factory=SvgPathImage,
    )
    qr.add_data(text)
    try:
        qr.make(fit=True)
        img = qr.make_image()
        img.save(str(out_path))
    except (qrcode.exceptions.DataOverflowError, ValueError) as e:
        # qrcode 8 reports an oversized payload as an invalid version 41
        raise EncodingError(f"Config too large for a QR code: {out_path.name}") from e
    except OSError as e:
        raise EncodingError(f"Cannot write QR image {out_path}: {e}") from e
    return out_path


def render_peer_qr(peer_dir: Path) -> Path:
    conf_path = peer_dir / f"{peer_dir.name}.conf"
    try:
        text = conf_path.read_text(encoding="utf-8")
    except OSError as e:
        raise EncodingError(f"Cannot read client config {conf_path}: {e}") from e
    return render_qr_svg(text, peer_dir / f"{peer_dir.name}.svg")
