import base64
from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_M

__all__ = ["render_qr_data_url"]


def render_qr_data_url(data: str) -> str:
    """Render ``data`` as a PNG QR code and return it as an embeddable data URL."""
    qr = qrcode.QRCode(
        version=None, box_size=4, border=4,
        error_correction=ERROR_CORRECT_M
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buf = BytesIO()
    img.save(buf)
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()
