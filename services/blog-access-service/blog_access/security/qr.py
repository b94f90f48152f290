"""QR rendering of provisioning URIs for authenticator apps."""

from __future__ import annotations

import io

import qrcode
import qrcode.image.svg


def render_qr_svg(uri: str, box_size: int = 10, border: int = 4) -> str:
    """Render ``uri`` as an inline SVG document."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=box_size,
        border=border,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    return buffer.getvalue().decode("utf-8")
