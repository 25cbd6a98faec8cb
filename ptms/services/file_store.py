"""
File store collaborator.

The workflow core persists only an opaque ``content_ref``; payload bytes live
behind this interface. ``LocalFileStore`` keeps them under ``UPLOAD_FOLDER``.
"""

from __future__ import annotations

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from ptms.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


class FileStore:
    """Interface: ``save`` returns a reference, ``open`` returns the bytes."""

    def save(self, payload: bytes, filename: str | None, media_type: str | None,
             namespace: str = "documents") -> str:
        raise NotImplementedError

    def open(self, ref: str) -> bytes:
        raise NotImplementedError


class LocalFileStore(FileStore):
    def __init__(self, root: str) -> None:
        self.root = root

    def _path(self, ref: str) -> str:
        path = os.path.abspath(os.path.join(self.root, ref))
        if not path.startswith(os.path.abspath(self.root) + os.sep):
            raise ValidationError("Invalid file reference", {"ref": ref})
        return path

    def save(self, payload, filename, media_type, namespace="documents"):
        name = secure_filename(filename or "") or "upload"
        ref = f"{secure_filename(namespace)}/{uuid.uuid4().hex}_{name}"
        path = self._path(ref)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(payload)
        logger.info("Stored %d bytes as %s (%s)", len(payload), ref, media_type)
        return ref

    def open(self, ref):
        with open(self._path(ref), "rb") as fh:
            return fh.read()


def validate_upload(payload: bytes | None, media_type: str | None, allowed=None) -> None:
    """Reject empty payloads and media types outside ``allowed``."""
    if not payload:
        raise ValidationError("Uploaded file is empty", {"field": "file"})
    if allowed is None:
        allowed = current_app.config["ALLOWED_UPLOAD_MEDIA_TYPES"]
    if media_type not in allowed:
        raise ValidationError(
            f"Unsupported media type: {media_type}",
            {"field": "media_type", "allowed": sorted(allowed)},
        )


def init_file_store(app) -> None:
    app.extensions["file_store"] = LocalFileStore(app.config["UPLOAD_FOLDER"])


def get_file_store() -> FileStore:
    return current_app.extensions["file_store"]
