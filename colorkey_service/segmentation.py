"""
Model-free background segmentation.

The background is assumed to be a uniform or near-uniform color touching
the image border. `segment_background` runs the whole pass:

 - sample colors along the four borders and estimate the backdrop color,
 - widen the match tolerance when the backdrop is noisy,
 - detect structural edges (Sobel) that act as fill barriers,
 - grow the background region inward from matching border pixels,
 - feather the mask boundary and write it into the alpha channel.

Feathering and compositing live in `postprocessing`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import NamedTuple, Sequence, Tuple, Union

import cv2
import numpy as np

from .errors import InvalidDimensionsError, InvalidParameterError
from .postprocessing import composite_alpha, feather_mask

logger = logging.getLogger(__name__)

PixelData = Union[bytes, bytearray, memoryview, np.ndarray]

DEFAULT_SAMPLE_INTERVAL = 15
# Gradient magnitude above which a pixel counts as a subject boundary.
EDGE_THRESHOLD = 30.0
# Edge mask values above this block the region fill.
EDGE_PROTECT_LEVEL = 128
TOLERANCE_CAP = 100.0
VARIANCE_SCALE = 50.0


class Color(NamedTuple):
    r: int
    g: int
    b: int

    @property
    def hex(self) -> str:
        return "#{:02X}{:02X}{:02X}".format(self.r, self.g, self.b)


DEFAULT_BACKGROUND = Color(255, 255, 255)


@dataclass
class SegmentationResult:
    pixels: np.ndarray  # (H, W, C) uint8, alpha rewritten
    removed_pixel_count: int
    background: Color
    variance: float
    tolerance: float  # effective, after variance scaling
    edge_mask: np.ndarray
    mask: np.ndarray  # feathered removal mask


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_pixel_array(pixels: PixelData, width: int, height: int, channels: int) -> np.ndarray:
    """
    View an interleaved buffer as a (height, width, channels) uint8 array.

    No copy is made for contiguous input, so a writable buffer stays shared
    with the caller.
    """
    if width <= 0 or height <= 0:
        raise InvalidDimensionsError(f"Image dimensions must be positive, got {width}x{height}")
    if channels not in (3, 4):
        raise InvalidDimensionsError(f"channels must be 3 or 4, got {channels}")

    if isinstance(pixels, np.ndarray):
        if pixels.dtype != np.uint8:
            raise InvalidDimensionsError(f"Pixel array must be uint8, got {pixels.dtype}")
        flat = pixels
    else:
        flat = np.frombuffer(pixels, dtype=np.uint8)

    expected = width * height * channels
    if flat.size != expected:
        raise InvalidDimensionsError(
            f"Buffer holds {flat.size} bytes, expected {expected} for {width}x{height}x{channels}"
        )
    return flat.reshape(height, width, channels)


def _edge_positions(length: int, interval: int) -> np.ndarray:
    positions = list(range(0, length, interval))
    # A stride longer than the edge would only hit index 0; keep the far corner too.
    if len(positions) == 1 and length > 1:
        positions.append(length - 1)
    return np.asarray(positions, dtype=np.intp)


def sample_edge_colors(
    pixels: PixelData,
    width: int,
    height: int,
    channels: int,
    interval: int = DEFAULT_SAMPLE_INTERVAL,
) -> np.ndarray:
    """
    Collect RGB samples along the top, bottom, left and right borders.

    Returns an (N, 3) uint8 array in that edge order. Alpha is ignored.
    """
    if interval <= 0:
        raise InvalidParameterError(f"Sample interval must be positive, got {interval}")
    image = as_pixel_array(pixels, width, height, channels)
    rgb = image[..., :3]
    xs = _edge_positions(width, interval)
    ys = _edge_positions(height, interval)
    return np.concatenate(
        (rgb[0, xs], rgb[height - 1, xs], rgb[ys, 0], rgb[ys, width - 1]),
        axis=0,
    )


def estimate_background(samples: Union[np.ndarray, Sequence[Color]]) -> Tuple[Color, float]:
    """
    Reduce border samples to a background color and a spread score.

    The spread is the mean Euclidean RGB distance of the samples from their
    mean. No samples yields white with zero spread.
    """
    arr = np.asarray(samples, dtype=np.float64).reshape(-1, 3)
    if arr.shape[0] == 0:
        return DEFAULT_BACKGROUND, 0.0

    mean = arr.mean(axis=0)
    deltas = arr - mean
    variance = float(np.sqrt((deltas * deltas).sum(axis=1)).mean())
    color = Color(*(_round_half_up(c) for c in mean))
    return color, variance


def adaptive_tolerance(base_tolerance: float, variance: float) -> float:
    """Loosen the match threshold for noisy backdrops, capped at 100."""
    return min(base_tolerance * (1.0 + variance / VARIANCE_SCALE), TOLERANCE_CAP)


def detect_structure_edges(pixels: PixelData, width: int, height: int, channels: int) -> np.ndarray:
    """
    Binary Sobel edge map over the mean-RGB luminance.

    Interior pixels only; the one-pixel border ring stays 0.
    """
    image = as_pixel_array(pixels, width, height, channels)
    edge_mask = np.zeros((height, width), dtype=np.uint8)
    if width < 3 or height < 3:
        return edge_mask

    luminance = image[..., :3].astype(np.float64).sum(axis=2) / 3.0
    gx = cv2.Sobel(luminance, cv2.CV_64F, 1, 0, ksize=3)
    gy = cv2.Sobel(luminance, cv2.CV_64F, 0, 1, ksize=3)
    magnitude = np.sqrt(gx * gx + gy * gy)

    edge_mask[1:-1, 1:-1] = np.where(magnitude[1:-1, 1:-1] > EDGE_THRESHOLD, 255, 0)
    return edge_mask


def color_distance_map(image: np.ndarray, color: Color) -> np.ndarray:
    """Per-pixel Euclidean RGB distance to `color`."""
    diff = image[..., :3].astype(np.int32) - np.asarray(color, dtype=np.int32)
    return np.sqrt((diff * diff).sum(axis=2))


def grow_background_region(
    pixels: PixelData,
    width: int,
    height: int,
    channels: int,
    background: Color,
    tolerance: float,
    edge_mask: np.ndarray,
) -> Tuple[np.ndarray, int]:
    """
    Flood the background inward from every matching border pixel.

    A pixel is removed when a 4-connected path of background-colored,
    unprotected pixels links it to a background-colored border pixel.
    Protected edge pixels are barriers: never removed, never expanded.
    The fill is computed as connected-component labeling of the passable
    pixels, keeping every component that contains a seed.

    Returns (mask, removed_count) with mask values 0 (keep) / 255 (remove).
    """
    image = as_pixel_array(pixels, width, height, channels)
    if edge_mask.shape != (height, width):
        raise InvalidDimensionsError(
            f"Edge mask shape {edge_mask.shape} does not match image {height}x{width}"
        )

    similar = color_distance_map(image, background) <= tolerance
    passable = similar & (edge_mask <= EDGE_PROTECT_LEVEL)

    border = np.zeros((height, width), dtype=bool)
    border[0, :] = border[-1, :] = True
    border[:, 0] = border[:, -1] = True
    seeds = border & passable

    mask = np.zeros((height, width), dtype=np.uint8)
    if not np.any(seeds):
        return mask, 0

    _, labels = cv2.connectedComponents(passable.astype(np.uint8), connectivity=4)
    seeded_labels = np.unique(labels[seeds])
    removed = np.isin(labels, seeded_labels)
    mask[removed] = 255
    return mask, int(np.count_nonzero(removed))


def _validate_parameters(tolerance: float, edge_feathering: int, sample_interval: int) -> None:
    try:
        finite = math.isfinite(tolerance)
    except TypeError:
        finite = False
    if not finite:
        raise InvalidParameterError(f"Tolerance must be a finite number, got {tolerance!r}")
    if isinstance(edge_feathering, bool) or int(edge_feathering) != edge_feathering:
        raise InvalidParameterError(f"Edge feathering must be an integer radius, got {edge_feathering!r}")
    if edge_feathering < 0:
        raise InvalidParameterError(f"Edge feathering must be non-negative, got {edge_feathering}")
    if sample_interval <= 0:
        raise InvalidParameterError(f"Sample interval must be positive, got {sample_interval}")


def segment_background(
    pixels: PixelData,
    width: int,
    height: int,
    channels: int,
    tolerance: float,
    edge_feathering: int,
    sample_interval: int = DEFAULT_SAMPLE_INTERVAL,
) -> SegmentationResult:
    """
    Remove a near-uniform background by rewriting the alpha channel.

    Writable buffers (bytearray, writable ndarray) are updated in place;
    read-only input is copied before compositing. The reported count is
    of fully removed pixels before feathering.

    Raises:
        InvalidDimensionsError: dimensions do not match the buffer.
        InvalidParameterError: bad tolerance, radius or stride, or no alpha channel.
    """
    image = as_pixel_array(pixels, width, height, channels)
    _validate_parameters(tolerance, edge_feathering, sample_interval)
    if channels != 4:
        raise InvalidParameterError("Pixel buffer must carry an alpha channel (RGBA)")
    edge_feathering = int(edge_feathering)

    samples = sample_edge_colors(image, width, height, channels, sample_interval)
    background, variance = estimate_background(samples)
    effective = adaptive_tolerance(float(tolerance), variance)
    logger.debug(
        "segment: %dx%d samples=%d background=%s variance=%.2f tolerance=%.2f->%.2f",
        width,
        height,
        len(samples),
        background.hex,
        variance,
        tolerance,
        effective,
    )

    edge_mask = detect_structure_edges(image, width, height, channels)
    logger.debug("segment: structural edge pixels=%d", int(np.count_nonzero(edge_mask)))

    mask, removed_count = grow_background_region(
        image, width, height, channels, background, effective, edge_mask
    )
    logger.debug("segment: removed pixels=%d of %d", removed_count, width * height)

    feathered = feather_mask(mask, width, height, edge_feathering)

    if not image.flags.writeable:
        image = image.copy()
    composite_alpha(image, feathered)

    return SegmentationResult(
        pixels=image,
        removed_pixel_count=removed_count,
        background=background,
        variance=variance,
        tolerance=effective,
        edge_mask=edge_mask,
        mask=feathered,
    )
