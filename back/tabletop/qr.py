import logging
from io import BytesIO

import qrcode
from PIL import Image
from qrcode.image.pil import PilImage

from .table_tokens import encode_table_token

logger = logging.getLogger(__name__)

# Fixed visual parameters for printed table codes
QR_SIZE_PX = 256
QR_MARGIN_MODULES = 2
QR_DARK = "#000000"
QR_LIGHT = "#FFFFFF"


class QRGenerationError(Exception):
    """Raised when the QR image cannot be rendered. Callers may retry."""


def build_order_url(token: str, base_url: str) -> str:
    return f"{base_url.rstrip('/')}/order/{token}"


def render_qr_png(token: str, base_url: str) -> bytes:
    """Render the order URL for a token as a PNG image."""
    order_url = build_order_url(token, base_url)
    try:
        qr = qrcode.QRCode(
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            border=QR_MARGIN_MODULES,
        )
        qr.add_data(order_url)
        qr.make(fit=True)
        image = qr.make_image(image_factory=PilImage, fill_color=QR_DARK, back_color=QR_LIGHT)
        image = image.get_image().resize((QR_SIZE_PX, QR_SIZE_PX), resample=Image.Resampling.NEAREST)

        output = BytesIO()
        image.save(output, format="PNG")
        return output.getvalue()
    except Exception as e:
        logger.error(f"Error generating QR code for {order_url}: {e}", exc_info=True)
        raise QRGenerationError("Failed to generate QR code") from e


def generate_table_qr(table_id: str, restaurant_id: str, table_name: str, base_url: str) -> tuple[str, bytes]:
    """Issue a fresh token for a table and render its QR code."""
    token = encode_table_token(table_id, restaurant_id, table_name)
    try:
        return token, render_qr_png(token, base_url)
    except QRGenerationError as e:
        raise QRGenerationError(f"Failed to generate QR code for table {table_name}") from e
