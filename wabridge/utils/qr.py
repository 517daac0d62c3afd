from __future__ import annotations

import base64
import io

import qrcode
from qrcode.image.svg import SvgPathImage

QR_BORDER = 1
QR_BOX_SIZE = 10


def qr_svg_data_url(qr_text: str, *, border: int = QR_BORDER, box_size: int = QR_BOX_SIZE) -> str:
    """Render a login code as an inline ``data:image/svg+xml`` URL."""
    image = qrcode.make(qr_text, image_factory=SvgPathImage, border=border, box_size=box_size)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
