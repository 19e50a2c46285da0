"""
pairing/qr.py — Pairing QR code rendering

The device pairs by scanning a QR code whose text is the JSON pairing
payload. Rendered as SVG so no imaging library is needed.
"""

from __future__ import annotations

import base64
import io
import json
import sys
from typing import Any, Optional, TextIO

import qrcode
import qrcode.exceptions
import qrcode.image.svg

from r1gateway.exceptions import QRRenderError

SVG_DATA_URI_PREFIX = "data:image/svg+xml;base64,"


def _build(payload: dict[str, Any]) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(json.dumps(payload, separators=(",", ":")))
    try:
        qr.make(fit=True)
    except qrcode.exceptions.DataOverflowError as e:
        raise QRRenderError(f"pairing payload too large for a QR code: {e}") from e
    return qr


def render_qr_svg(payload: dict[str, Any]) -> bytes:
    """Encode the pairing payload as an SVG document."""
    img = _build(payload).make_image(image_factory=qrcode.image.svg.SvgPathImage)
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def render_qr_data_uri(payload: dict[str, Any]) -> str:
    """Encode the pairing payload as a `data:image/svg+xml;base64,...` URI."""
    svg = render_qr_svg(payload)
    return SVG_DATA_URI_PREFIX + base64.b64encode(svg).decode("ascii")


def print_qr_ascii(payload: dict[str, Any], out: Optional[TextIO] = None) -> None:
    """Draw the QR code with block characters, for scanning off a terminal."""
    _build(payload).print_ascii(out=out or sys.stdout, invert=True)
