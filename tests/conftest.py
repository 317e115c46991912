from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from colorkey_service import config
from colorkey_service.sessions import session_store


@pytest.fixture(autouse=True)
def fresh_state():
    config.get_settings.cache_clear()
    session_store.clear()
    yield
    config.get_settings.cache_clear()
    session_store.clear()


def framed_square(size=20, inset=7, side=6, bg=(255, 255, 255), fg=(0, 0, 0), channels=4):
    """Solid background with a centered square of a sharply different color."""
    img = np.zeros((size, size, channels), dtype=np.uint8)
    img[..., :3] = bg
    img[inset : inset + side, inset : inset + side, :3] = fg
    if channels == 4:
        img[..., 3] = 255
    return img


@pytest.fixture
def encode_image():
    def _encode(arr, fmt="PNG"):
        buf = BytesIO()
        Image.fromarray(arr).save(buf, format=fmt)
        return buf.getvalue()

    return _encode


@pytest.fixture
def square_image():
    return framed_square
