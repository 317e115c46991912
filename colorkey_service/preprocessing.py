"""
Image decoding helpers for the color-key pipeline.

Compressed payloads are decoded with Pillow into an RGBA pixel array (an
alpha channel is added when the source has none) so the segmentation core
only ever sees raw interleaved buffers.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InvalidDimensionsError, InvalidImageError
from .segmentation import Color

FORMAT_TO_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "TIFF": "image/tiff",
    "BMP": "image/bmp",
    "AVIF": "image/avif",
}


@dataclass
class ImageMetadata:
    width: int
    height: int
    mime_type: str


@dataclass
class DecodedImage:
    pixels: np.ndarray  # (H, W, 4) uint8, writable
    width: int
    height: int
    mime_type: str


def decode_payload(payload: str) -> bytes:
    """Decode a base64 image payload, accepting an optional data-URL prefix."""
    data = payload.split(",", 1)[1] if "," in payload else payload
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image payload is not valid base64") from exc
    if not raw:
        raise InvalidImageError("Image payload is empty")
    return raw


def _open_image(image_bytes: bytes, max_pixels: Optional[int] = None) -> Image.Image:
    """
    Open and decode an image, checking `max_pixels` against the header size
    before any pixel data is decoded.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
    except Image.DecompressionBombError as exc:
        raise InvalidDimensionsError(str(exc)) from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError("Invalid image data") from exc

    width, height = image.size
    if max_pixels is not None and width * height > max_pixels:
        raise InvalidDimensionsError(
            f"Image {width}x{height} exceeds the {max_pixels} pixel limit"
        )

    try:
        image.load()
    except Image.DecompressionBombError as exc:
        raise InvalidDimensionsError(str(exc)) from exc
    except OSError as exc:
        raise InvalidImageError("Invalid image data") from exc
    return image


def _mime_type(image: Image.Image) -> str:
    return FORMAT_TO_MIME.get(image.format or "", "image/jpeg")


def get_image_metadata(image_bytes: bytes) -> ImageMetadata:
    image = _open_image(image_bytes)
    width, height = image.size
    if not width or not height:
        raise InvalidImageError("Unable to determine image dimensions")
    return ImageMetadata(width=width, height=height, mime_type=_mime_type(image))


def load_rgba_from_bytes(image_bytes: bytes, max_pixels: Optional[int] = None) -> DecodedImage:
    """
    Decode an image to an RGBA array, refusing images above `max_pixels`.

    The segmentation passes are O(width*height) with no early exit, so the
    size guard is the only way to bound a call.
    """
    image = _open_image(image_bytes, max_pixels=max_pixels)
    width, height = image.size
    mime_type = _mime_type(image)
    rgba = np.array(image.convert("RGBA"), dtype=np.uint8)
    return DecodedImage(pixels=rgba, width=width, height=height, mime_type=mime_type)


def average_color(image_bytes: bytes, x: int, y: int, radius: int = 5) -> Color:
    """Mean RGB over the square of half-size `radius` around (x, y), clipped to the image."""
    image = _open_image(image_bytes)
    width, height = image.size
    if x < 0 or y < 0:
        raise ValueError("Invalid coordinates: x and y must be non-negative values.")
    if x >= width or y >= height:
        raise ValueError(f"Coordinates ({x}, {y}) exceed image bounds ({width}x{height}).")
    if radius < 0:
        raise ValueError("radius must be non-negative")

    left, top = max(0, x - radius), max(0, y - radius)
    right, bottom = min(width - 1, x + radius), min(height - 1, y + radius)
    rgb = np.asarray(image.convert("RGB"), dtype=np.float64)
    region = rgb[top : bottom + 1, left : right + 1].reshape(-1, 3)
    mean = region.mean(axis=0)
    return Color(*(int(np.floor(c + 0.5)) for c in mean))


COMPRESSION_FORMATS = {"jpeg": "JPEG", "png": "PNG", "webp": "WEBP"}


@dataclass
class EncodedImage:
    data: bytes
    mime_type: str
    format: str  # lower-case short name, e.g. "png"


def _save(image: Image.Image, pil_format: str, **params) -> bytes:
    if pil_format == "JPEG" and image.mode not in ("RGB", "L"):
        image = image.convert("RGB")
    elif pil_format == "WEBP" and image.mode not in ("RGB", "RGBA"):
        image = image.convert("RGBA")
    buf = BytesIO()
    image.save(buf, format=pil_format, **params)
    return buf.getvalue()


def _source_format(image: Image.Image) -> str:
    return image.format if image.format in FORMAT_TO_MIME else "PNG"


def extract_region(image_bytes: bytes, x: int, y: int, width: int, height: int) -> EncodedImage:
    """Crop a rectangle and re-encode it in the source image's format."""
    if x < 0 or y < 0:
        raise ValueError("Invalid coordinates: x and y must be non-negative values.")
    if width <= 0 or height <= 0:
        raise ValueError("Invalid dimensions: width and height must be positive values.")

    image = _open_image(image_bytes)
    image_w, image_h = image.size
    if x + width > image_w or y + height > image_h:
        raise ValueError(
            f"Region ({x}, {y}, {width}x{height}) exceeds image bounds ({image_w}x{image_h})."
        )

    pil_format = _source_format(image)
    cropped = image.crop((x, y, x + width, y + height))
    return EncodedImage(
        data=_save(cropped, pil_format),
        mime_type=FORMAT_TO_MIME[pil_format],
        format=pil_format.lower(),
    )


def compress_image(image_bytes: bytes, format: Optional[str] = None, quality: int = 80) -> EncodedImage:
    """
    Re-encode an image as jpeg, png or webp.

    Without `format` the source format is kept when it is one of those three,
    otherwise jpeg. PNG is lossless, so `quality` only switches on optimization.
    """
    if not 1 <= quality <= 100:
        raise ValueError("quality must be between 1 and 100")
    if format is not None and format.lower() not in COMPRESSION_FORMATS:
        raise ValueError("format must be one of jpeg | png | webp")

    image = _open_image(image_bytes)
    if format is not None:
        pil_format = COMPRESSION_FORMATS[format.lower()]
    elif image.format in COMPRESSION_FORMATS.values():
        pil_format = image.format
    else:
        pil_format = "JPEG"

    if pil_format == "PNG":
        data = _save(image, pil_format, optimize=True)
    else:
        data = _save(image, pil_format, quality=quality)
    return EncodedImage(data=data, mime_type=FORMAT_TO_MIME[pil_format], format=pil_format.lower())
