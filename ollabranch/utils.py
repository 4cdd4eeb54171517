import base64
from io import BytesIO
from pathlib import Path
from typing import Union

from PIL import Image


def encode_image_base64(image: Image.Image) -> str:
    """PNG-encode *image* and return it base64'd, ready for ``Request.images``."""
    buffered = BytesIO()
    image.save(buffered, format="PNG")
    return base64.b64encode(buffered.getvalue()).decode()


def encode_image_file(path: Union[str, Path]) -> str:
    """Load any image format Pillow reads and re-encode it as base64 PNG."""
    with Image.open(path) as image:
        return encode_image_base64(image.convert("RGB"))
