"""
FastAPI layer exposing color-key background removal.

Endpoints:
 - GET  /health
 - POST /sessions
 - POST /sessions/from-path
 - GET  /sessions
 - GET  /sessions/{session_id}/size
 - POST /sessions/{session_id}/pick-color
 - POST /sessions/{session_id}/remove-background
 - POST /sessions/{session_id}/extract-region
 - POST /sessions/{session_id}/compress
"""

from __future__ import annotations

import base64
import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, HttpUrl
import requests

from . import config
from .errors import SessionNotFoundError
from .pipeline import process_image_bytes
from .preprocessing import (
    average_color,
    compress_image,
    decode_payload,
    extract_region,
    get_image_metadata,
)
from .sessions import Session, create_session_from_path, session_store

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Color-Key Background Removal Service", version="0.1.0")


class CreateSessionRequest(BaseModel):
    imagePayload: Optional[str] = None  # base64, data-URL prefix allowed
    imageUrl: Optional[HttpUrl] = None
    description: Optional[str] = None


class CreateSessionByPathRequest(BaseModel):
    path: str
    description: Optional[str] = None


class SessionResponse(BaseModel):
    sessionId: str
    description: Optional[str] = None


class ImageSizeResponse(BaseModel):
    width: int
    height: int
    mimeType: str


class PickColorRequest(BaseModel):
    x: int
    y: int
    radius: int = Field(5, ge=0)


class ColorResponse(BaseModel):
    r: int
    g: int
    b: int
    hex: str


class RemoveBackgroundRequest(BaseModel):
    tolerance: Optional[float] = None
    edgeFeathering: Optional[int] = None
    strategy: Optional[str] = None  # "color" | "model"
    outputPath: Optional[str] = None


class RemoveBackgroundResponse(BaseModel):
    strategy: str
    # null when the strategy does not count pixels
    removedPixelCount: Optional[int] = None
    imagePayload: Optional[str] = None
    mimeType: Optional[str] = None
    path: Optional[str] = None


class ExtractRegionRequest(BaseModel):
    x: int
    y: int
    width: int
    height: int
    outputPath: Optional[str] = None


class CompressRequest(BaseModel):
    format: Optional[str] = None  # "jpeg" | "png" | "webp"
    quality: int = Field(80, ge=1, le=100)
    outputPath: Optional[str] = None


class EncodedImageResponse(BaseModel):
    mimeType: str
    format: str
    imagePayload: Optional[str] = None
    path: Optional[str] = None
    originalSize: Optional[int] = None
    compressedSize: Optional[int] = None
    compressionRatio: Optional[str] = None


def _download_image(url: str) -> bytes:
    resp = requests.get(url, timeout=(5, settings.request_timeout_seconds))
    resp.raise_for_status()
    return resp.content


def _get_session(session_id: str) -> Session:
    try:
        return session_store.get(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _validate_output_path(output_path: str) -> None:
    if not os.path.isabs(output_path):
        raise HTTPException(status_code=400, detail="outputPath must be an absolute path")
    directory = os.path.dirname(output_path)
    if not os.path.isdir(directory):
        raise HTTPException(status_code=400, detail=f"Directory does not exist: {directory}")


def _write_output(output_path: str, data: bytes) -> None:
    try:
        with open(output_path, "wb") as fh:
            fh.write(data)
    except OSError as exc:
        logger.exception("Failed to write output to %s: %s", output_path, exc)
        raise HTTPException(status_code=500, detail="Could not write output file") from exc


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse)
def create_session(body: CreateSessionRequest):
    if body.imagePayload:
        try:
            image_bytes = decode_payload(body.imagePayload)
            get_image_metadata(image_bytes)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
        payload = base64.b64encode(image_bytes).decode("ascii")
    elif body.imageUrl:
        try:
            image_bytes = _download_image(str(body.imageUrl))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to download image: %s", exc)
            raise HTTPException(status_code=400, detail="Could not download image") from exc
        try:
            get_image_metadata(image_bytes)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve)) from ve
        payload = base64.b64encode(image_bytes).decode("ascii")
    else:
        raise HTTPException(status_code=400, detail="Either imagePayload or imageUrl is required")

    session_id = session_store.create(payload, body.description)
    return SessionResponse(sessionId=session_id, description=body.description)


@app.post("/sessions/from-path", response_model=SessionResponse)
def create_session_by_path(body: CreateSessionByPathRequest):
    try:
        session_id = create_session_from_path(body.path, body.description)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    return SessionResponse(sessionId=session_id, description=body.description)


@app.get("/sessions", response_model=List[SessionResponse])
def list_sessions():
    return [
        SessionResponse(sessionId=s.session_id, description=s.description)
        for s in session_store.list_sessions()
    ]


@app.get("/sessions/{session_id}/size", response_model=ImageSizeResponse)
def get_image_size(session_id: str):
    session = _get_session(session_id)
    try:
        metadata = get_image_metadata(decode_payload(session.image_payload))
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    return ImageSizeResponse(width=metadata.width, height=metadata.height, mimeType=metadata.mime_type)


@app.post("/sessions/{session_id}/pick-color", response_model=ColorResponse)
def pick_color(session_id: str, body: PickColorRequest):
    session = _get_session(session_id)
    try:
        color = average_color(decode_payload(session.image_payload), body.x, body.y, body.radius)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    return ColorResponse(r=color.r, g=color.g, b=color.b, hex=color.hex)


@app.post("/sessions/{session_id}/remove-background", response_model=RemoveBackgroundResponse)
def remove_background(session_id: str, body: RemoveBackgroundRequest):
    session = _get_session(session_id)
    if body.outputPath:
        _validate_output_path(body.outputPath)

    try:
        outcome = process_image_bytes(
            decode_payload(session.image_payload),
            tolerance=body.tolerance,
            edge_feathering=body.edgeFeathering,
            strategy=body.strategy,
        )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve
    except Exception as exc:  # noqa: BLE001
        logger.exception("Background removal failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc

    if body.outputPath:
        _write_output(body.outputPath, outcome.png_bytes)
        return RemoveBackgroundResponse(
            strategy=outcome.strategy,
            removedPixelCount=outcome.removed_pixel_count,
            path=body.outputPath,
        )

    return RemoveBackgroundResponse(
        strategy=outcome.strategy,
        removedPixelCount=outcome.removed_pixel_count,
        imagePayload=base64.b64encode(outcome.png_bytes).decode("ascii"),
        mimeType="image/png",
    )


@app.post("/sessions/{session_id}/extract-region", response_model=EncodedImageResponse)
def extract_image_region(session_id: str, body: ExtractRegionRequest):
    session = _get_session(session_id)
    if body.outputPath:
        _validate_output_path(body.outputPath)
    try:
        region = extract_region(
            decode_payload(session.image_payload), body.x, body.y, body.width, body.height
        )
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve

    if body.outputPath:
        _write_output(body.outputPath, region.data)
        return EncodedImageResponse(mimeType=region.mime_type, format=region.format, path=body.outputPath)
    return EncodedImageResponse(
        mimeType=region.mime_type,
        format=region.format,
        imagePayload=base64.b64encode(region.data).decode("ascii"),
    )


@app.post("/sessions/{session_id}/compress", response_model=EncodedImageResponse)
def compress_session_image(session_id: str, body: CompressRequest):
    session = _get_session(session_id)
    if body.outputPath:
        _validate_output_path(body.outputPath)
    try:
        original = decode_payload(session.image_payload)
        compressed = compress_image(original, body.format, body.quality)
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve)) from ve

    ratio = (len(original) - len(compressed.data)) / len(original) * 100.0
    response = EncodedImageResponse(
        mimeType=compressed.mime_type,
        format=compressed.format,
        originalSize=len(original),
        compressedSize=len(compressed.data),
        compressionRatio=f"{ratio:.2f}%",
    )
    if body.outputPath:
        _write_output(body.outputPath, compressed.data)
        response.path = body.outputPath
    else:
        response.imagePayload = base64.b64encode(compressed.data).decode("ascii")
    return response
