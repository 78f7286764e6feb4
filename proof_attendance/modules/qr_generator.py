"""
QR Code Generator Module - Proof Attendance System

Renders the live encoded token of a session as a scannable QR image for the
instructor's display. The QR payload is the encoded token string verbatim;
the optional caption below the code shows the subject and cohort so the
room can see which session the code belongs to.
"""

import base64
import io
import logging
from typing import Any, Dict, Optional

import qrcode
from PIL import Image, ImageDraw, ImageFont


class QRGenerator:
    """
    QR renderer for encoded proof tokens.
    """

    def __init__(self, box_size: int = 10, border: int = 4,
                 fill_color: str = 'black', back_color: str = 'white'):
        """
        Args:
            box_size (int): Size of each box in pixels
            border (int): Quiet-zone width in boxes (minimum is 4)
            fill_color (str): Module color
            back_color (str): Background color
        """
        self.logger = logging.getLogger(__name__)
        self.settings = {
            'version': None,  # fit to payload
            'error_correction': qrcode.constants.ERROR_CORRECT_M,
            'box_size': box_size,
            'border': border,
            'fill_color': fill_color,
            'back_color': back_color,
        }

    def render_image(self, encoded_token: str, caption: Optional[str] = None) -> Image.Image:
        """
        Build the QR image for an encoded token.

        Args:
            encoded_token (str): Opaque token string to embed
            caption (str): Text drawn under the code

        Returns:
            Image.Image: RGB image
        """
        qr = qrcode.QRCode(
            version=self.settings['version'],
            error_correction=self.settings['error_correction'],
            box_size=self.settings['box_size'],
            border=self.settings['border']
        )
        qr.add_data(encoded_token)
        qr.make(fit=True)

        img = qr.make_image(
            fill_color=self.settings['fill_color'],
            back_color=self.settings['back_color']
        ).convert('RGB')

        if caption:
            img = self._add_caption(img, caption)
        return img

    def render_base64(self, encoded_token: str, caption: Optional[str] = None) -> Dict[str, Any]:
        """
        Render an encoded token as a base64 PNG.

        Returns:
            Dict[str, Any]: ``image_base64`` and ``image_size``
        """
        img = self.render_image(encoded_token, caption)

        buffer = io.BytesIO()
        img.save(buffer, format='PNG')
        img_base64 = base64.b64encode(buffer.getvalue()).decode()
        self.logger.debug(f"Rendered QR image {img.size[0]}x{img.size[1]} for a {len(encoded_token)}-char token")

        return {
            'image_base64': img_base64,
            'image_size': img.size,
        }

    def _add_caption(self, qr_img: Image.Image, caption: str) -> Image.Image:
        original_size = qr_img.size
        new_img = Image.new('RGB', (original_size[0], original_size[1] + 40), 'white')
        new_img.paste(qr_img, (0, 0))

        draw = ImageDraw.Draw(new_img)
        try:
            font = ImageFont.truetype("arial.ttf", 16)
        except (IOError, OSError):
            font = ImageFont.load_default()

        bbox = draw.textbbox((0, 0), caption, font=font)
        text_width = bbox[2] - bbox[0]
        draw.text(((original_size[0] - text_width) // 2, original_size[1] + 10), caption,
                  fill='black', font=font)
        return new_img
