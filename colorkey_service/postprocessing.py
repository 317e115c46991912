"""Mask finishing: boundary feathering, alpha compositing and PNG output."""

from __future__ import annotations

from io import BytesIO
import logging
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from .errors import InvalidDimensionsError, InvalidParameterError

logger = logging.getLogger(__name__)


def gaussian_kernel(radius: int) -> np.ndarray:
    """Normalized (2r+1)x(2r+1) Gaussian kernel with sigma = radius / 2."""
    if radius <= 0:
        return np.ones((1, 1), dtype=np.float64)
    size = 2 * radius + 1
    k1d = cv2.getGaussianKernel(size, radius / 2.0, cv2.CV_64F)
    kernel = k1d @ k1d.T
    return kernel / kernel.sum()


def boundary_pixels(mask: np.ndarray) -> np.ndarray:
    """True where any in-bounds 4-neighbor holds a different mask value."""
    boundary = np.zeros(mask.shape, dtype=bool)
    horizontal = mask[:, 1:] != mask[:, :-1]
    boundary[:, 1:] |= horizontal
    boundary[:, :-1] |= horizontal
    vertical = mask[1:, :] != mask[:-1, :]
    boundary[1:, :] |= vertical
    boundary[:-1, :] |= vertical
    return boundary


def feather_mask(mask: np.ndarray, width: int, height: int, radius: int) -> np.ndarray:
    """
    Soften the removal mask only where it changes value.

    Boundary pixels take the Gaussian-weighted mean of their neighborhood,
    normalized by the weights that fall inside the canvas; samples outside
    the image count in neither numerator nor denominator. Every other pixel
    is copied through. A radius of 0 returns `mask` itself.
    """
    if mask.shape != (height, width):
        raise InvalidDimensionsError(f"Mask shape {mask.shape} does not match image {height}x{width}")
    if radius < 0:
        raise InvalidParameterError(f"Feather radius must be non-negative, got {radius}")
    if radius == 0:
        return mask

    feathered = mask.copy()
    boundary = boundary_pixels(mask)
    if not np.any(boundary):
        return feathered

    kernel = gaussian_kernel(radius)
    mask_f = mask.astype(np.float64)
    weighted = cv2.filter2D(mask_f, cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)
    coverage = cv2.filter2D(np.ones_like(mask_f), cv2.CV_64F, kernel, borderType=cv2.BORDER_CONSTANT)

    # Zero in-canvas weight keeps the unfiltered value.
    averaged = np.divide(weighted, coverage, out=mask_f.copy(), where=coverage > 0)
    rounded = np.clip(np.floor(averaged + 0.5), 0, 255).astype(np.uint8)
    feathered[boundary] = rounded[boundary]
    logger.debug("feather: radius=%d boundary pixels=%d", radius, int(np.count_nonzero(boundary)))
    return feathered


def composite_alpha(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Write `255 - mask` into the alpha channel of `image` in place."""
    if image.ndim != 3 or image.shape[2] < 4:
        raise InvalidParameterError("Compositing requires an RGBA pixel array")
    if mask.shape != image.shape[:2]:
        raise InvalidDimensionsError(f"Mask shape {mask.shape} does not match image {image.shape[:2]}")
    image[..., 3] = 255 - mask
    return image


def encode_png(rgba: np.ndarray) -> bytes:
    """Encode an (H, W, 4) uint8 array as PNG bytes, keeping transparency."""
    out = Image.fromarray(np.ascontiguousarray(rgba))
    buf = BytesIO()
    out.save(buf, format="PNG")
    return buf.getvalue()


def maybe_dump_debug(edge_mask: np.ndarray, mask: np.ndarray, debug_dir: Path) -> None:
    """Write the edge and removal masks for inspection when DEBUG is enabled."""
    try:
        debug_dir.mkdir(parents=True, exist_ok=True)
        written = {
            name: cv2.imwrite(str(debug_dir / name), data)
            for name, data in (("edge_mask.png", edge_mask), ("removal_mask.png", mask))
        }
        failed = [name for name, ok in written.items() if not ok]
        if failed:
            logger.warning("postprocess: cv2 could not write debug outputs %s in %s", failed, debug_dir)
        else:
            logger.debug("postprocess: wrote debug outputs to %s", debug_dir)
    except Exception as exc:  # noqa: BLE001
        logger.warning("postprocess: failed to write debug outputs: %s", exc)
