import base64
import io

from PIL import Image

from proof_attendance.modules.qr_generator import QRGenerator


def test_render_image_is_rgb():
    img = QRGenerator().render_image('gAAAAABexample-token')

    assert img.mode == 'RGB'
    assert img.size[0] == img.size[1]


def test_caption_extends_image_height():
    generator = QRGenerator(box_size=4)
    plain = generator.render_image('gAAAAABexample-token')
    captioned = generator.render_image('gAAAAABexample-token', caption='DSA - Year 2 - Sem 3')

    assert captioned.size == (plain.size[0], plain.size[1] + 40)


def test_render_base64_returns_png():
    result = QRGenerator(box_size=4).render_base64('gAAAAABexample-token', caption='DSA')

    img = Image.open(io.BytesIO(base64.b64decode(result['image_base64'])))
    assert img.format == 'PNG'
    assert img.size == result['image_size']
