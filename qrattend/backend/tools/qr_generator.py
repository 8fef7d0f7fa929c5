import base64
import io
import logging

import qrcode

logger = logging.getLogger(__name__)


class QRCodeError(Exception):
    pass


def generate_qr_data_url(payload: str) -> str:
    """
    Renders ``payload`` as a PNG QR code and returns it as a data URL.
    The payload is embedded as-is; clients scan back exactly this string.
    """
    try:
        img = qrcode.make(payload)
        buf = io.BytesIO()
        img.save(buf, format="PNG")
    except Exception as e:
        logger.error("QR code rendering failed.", exc_info=True)
        raise QRCodeError("Failed to generate QR Code") from e
    encoded = base64.b64encode(buf.getvalue()).decode("utf-8")
    return f"data:image/png;base64,{encoded}"
