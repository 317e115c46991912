"""
In-memory image sessions.

A session maps an opaque `img_...` id to a base64 image payload so clients
can upload once and run several operations against the same image.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
from threading import Lock
from typing import Dict, List, Optional
import uuid

from .errors import InvalidImageError, SessionNotFoundError
from .preprocessing import get_image_metadata

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^img_[a-zA-Z0-9_-]+$")


@dataclass
class Session:
    session_id: str
    image_payload: str  # base64
    description: Optional[str] = None


class SessionStore:
    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()

    def create(self, image_payload: str, description: Optional[str] = None) -> str:
        session_id = f"img_{uuid.uuid4().hex}"
        with self._lock:
            self._sessions[session_id] = Session(session_id, image_payload, description)
        logger.info("Created session %s", session_id)
        return session_id

    def get(self, session_id: str) -> Session:
        """Return the session or raise SessionNotFoundError for unknown/malformed ids."""
        if not SESSION_ID_PATTERN.match(session_id or ""):
            raise SessionNotFoundError(session_id)
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def has(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def list_sessions(self) -> List[Session]:
        with self._lock:
            return list(self._sessions.values())

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


session_store = SessionStore()


def validate_absolute_path(file_path: str) -> Path:
    if not file_path:
        raise ValueError("Path is required and must be a string")
    if not os.path.isabs(file_path):
        raise ValueError(f'Path must be absolute. Received relative path: "{file_path}"')
    return Path(file_path)


def create_session_from_path(
    file_path: str, description: Optional[str] = None, store: Optional[SessionStore] = None
) -> str:
    """Read an image file into a new session after checking it is a real, readable image."""
    store = store or session_store
    path = validate_absolute_path(file_path)
    if not path.is_file():
        raise ValueError(f'File not found: "{file_path}"')
    if not os.access(path, os.R_OK):
        raise ValueError(f'Permission denied: Cannot read file "{file_path}"')

    data = path.read_bytes()
    if not data:
        raise ValueError(f'File is empty: "{file_path}"')
    try:
        get_image_metadata(data)
    except InvalidImageError as exc:
        raise InvalidImageError(f'Invalid or corrupted image file: "{file_path}"') from exc

    payload = base64.b64encode(data).decode("ascii")
    return store.create(payload, description)
