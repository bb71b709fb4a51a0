"""Utility functions for rendering QR images of scan URLs.

The lifecycle code never deals with images; the HTTP layer calls these
helpers to encode the scan URL of a record.  ``make_qr_data_url`` returns an
inline ``data:`` URL for JSON responses and ``make_qr_png`` the raw PNG bytes
for downloads and printing.
"""

import base64
import io
import qrcode


def make_qr_png(payload: str) -> bytes:
    """Render ``payload`` as a PNG QR code."""

    qr = qrcode.QRCode(version=1, box_size=10, border=4)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def make_qr_data_url(payload: str) -> str:
    return "data:image/png;base64," + base64.b64encode(make_qr_png(payload)).decode("ascii")
