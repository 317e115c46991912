"""
Model-based removal strategy backed by rembg.

This is an opaque alternative to the color-key core: encoded image bytes
go in, an encoded RGBA PNG comes out. The rembg session is created once on
first use and shared across requests.
"""

from __future__ import annotations

import logging
from threading import Lock

from . import config

logger = logging.getLogger(__name__)

_SESSION = None
_LOCK = Lock()


def get_rembg_session():
    """Return the shared rembg session, loading the configured model on first access."""
    global _SESSION
    if _SESSION is not None:
        return _SESSION

    with _LOCK:
        if _SESSION is None:
            from rembg import new_session

            model_name = config.get_settings().rembg_model_name
            logger.info("Loading rembg model %s", model_name)
            _SESSION = new_session(model_name)
    return _SESSION


def remove_with_model(image_bytes: bytes) -> bytes:
    """
    Run rembg on encoded image bytes and return PNG bytes.

    Raises:
        RuntimeError: when the model backend fails.
    """
    from rembg import remove

    session = get_rembg_session()
    try:
        output = remove(image_bytes, session=session)
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError("Model-based background removal failed") from exc
    if not isinstance(output, (bytes, bytearray)):
        raise RuntimeError("Model backend returned an unexpected payload")
    return bytes(output)
