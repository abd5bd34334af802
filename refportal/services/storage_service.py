"""
Local-disk file storage for form attachments.

Uploaded files are saved under UPLOAD_FOLDER with a UUID-hex name and
exposed at STORAGE_PUBLIC_URL/<name>. The workflow engine only sees the
returned ``{url, id, provider}`` dict.
"""

import logging
import os
import shutil
import tempfile
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

PROVIDER_LOCAL = "local"


def _upload_folder() -> str:
    folder = current_app.config["UPLOAD_FOLDER"]
    os.makedirs(folder, exist_ok=True)
    return folder


def _public_url(stored_name: str) -> str:
    base = current_app.config.get("STORAGE_PUBLIC_URL", "/uploads").rstrip("/")
    return f"{base}/{stored_name}"


def _stored_name(original: str) -> tuple[str, str]:
    file_id = uuid.uuid4().hex
    safe = secure_filename(original or "") or "file"
    return file_id, f"{file_id}_{safe}"


def upload(local_path: str) -> dict:
    """Copy a file from *local_path* into storage and describe it."""
    file_id, name = _stored_name(os.path.basename(local_path))
    dest = os.path.join(_upload_folder(), name)
    shutil.copyfile(local_path, dest)
    logger.info("Stored file", extra={"file_id": file_id, "stored_name": name})
    return {"url": _public_url(name), "id": file_id, "provider": PROVIDER_LOCAL}


def upload_stream(file_storage) -> dict:
    """Store a werkzeug FileStorage from a multipart request via ``upload``."""
    original = secure_filename(file_storage.filename or "") or "file"
    with tempfile.TemporaryDirectory(prefix="refportal-upload-") as staging:
        staged = os.path.join(staging, original)
        file_storage.save(staged)
        return upload(staged)
