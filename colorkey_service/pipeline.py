"""
High-level background removal pipeline.

`process_image_bytes` is the main entry point used by both the HTTP API and
the local CLI helper. Orchestration stays simple:
bytes in -> decode to RGBA -> strategy -> RGBA PNG bytes out.

Two strategies share that contract and are picked by configuration:
 - "color": the model-free color-key segmentation in `segmentation`,
 - "model": the opaque rembg call in `model_removal`.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Optional

from . import config
from .model_removal import remove_with_model
from .postprocessing import encode_png, maybe_dump_debug
from .preprocessing import load_rgba_from_bytes
from .segmentation import segment_background

logger = logging.getLogger(__name__)


@dataclass
class RemovalOutcome:
    png_bytes: bytes
    # None means the strategy does not count pixels (model), not "nothing removed".
    removed_pixel_count: Optional[int]
    strategy: str


def _remove_by_color(
    image_bytes: bytes,
    tolerance: float,
    edge_feathering: int,
    settings: config.Settings,
) -> RemovalOutcome:
    decoded = load_rgba_from_bytes(image_bytes, max_pixels=settings.max_image_pixels)
    result = segment_background(
        decoded.pixels,
        decoded.width,
        decoded.height,
        channels=4,
        tolerance=tolerance,
        edge_feathering=edge_feathering,
        sample_interval=settings.edge_sample_interval,
    )
    if settings.debug:
        maybe_dump_debug(result.edge_mask, result.mask, Path(settings.debug_output_dir))
    return RemovalOutcome(
        png_bytes=encode_png(result.pixels),
        removed_pixel_count=result.removed_pixel_count,
        strategy="color",
    )


def _remove_by_model(image_bytes: bytes) -> RemovalOutcome:
    return RemovalOutcome(
        png_bytes=remove_with_model(image_bytes),
        removed_pixel_count=None,
        strategy="model",
    )


def process_image_bytes(
    image_bytes: bytes,
    tolerance: Optional[float] = None,
    edge_feathering: Optional[int] = None,
    strategy: Optional[str] = None,
) -> RemovalOutcome:
    """
    Full pipeline from encoded bytes to RGBA PNG bytes.

    `tolerance` and `edge_feathering` only apply to the color strategy and
    fall back to the configured defaults.

    Raises:
        ValueError: when input or parameters are invalid.
        RuntimeError: when the model backend fails.
    """
    settings = config.get_settings()
    chosen = config.resolve_strategy(strategy, settings=settings)

    if chosen == "model":
        logger.info("remove: strategy=model bytes=%d", len(image_bytes))
        return _remove_by_model(image_bytes)

    tolerance = settings.default_tolerance if tolerance is None else tolerance
    edge_feathering = settings.default_edge_feathering if edge_feathering is None else edge_feathering
    logger.info(
        "remove: strategy=color tolerance=%s feather=%s bytes=%d",
        tolerance,
        edge_feathering,
        len(image_bytes),
    )
    outcome = _remove_by_color(image_bytes, tolerance, edge_feathering, settings)
    logger.info("remove: removed_pixel_count=%d", outcome.removed_pixel_count)
    return outcome
