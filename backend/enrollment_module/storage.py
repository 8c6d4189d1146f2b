import os
import re
import shutil
import time
import uuid

from fastapi import UploadFile

from .config import settings


UPLOAD_URL_PREFIX = "/uploads"
UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.]")


class UploadError(Exception):
    pass


def ensure_upload_dir() -> str:
    os.makedirs(settings.upload_dir, exist_ok=True)
    return settings.upload_dir


def safe_filename(filename: str) -> str:
    return UNSAFE_CHARS.sub("_", os.path.basename(filename or "")) or "file"


def save_upload(file: UploadFile | None) -> str | None:
    """Store an uploaded file and return its public URL, or None when nothing was sent."""
    if file is None or not file.filename:
        return None

    unique_filename = f"{int(time.time() * 1000)}-{uuid.uuid4()}-{safe_filename(file.filename)}"
    file_path = os.path.join(ensure_upload_dir(), unique_filename)
    try:
        with open(file_path, "wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError as exc:
        raise UploadError(f"Could not store {file.filename}: {exc}") from exc

    return f"{UPLOAD_URL_PREFIX}/{unique_filename}"


def remove_upload(url: str | None) -> None:
    """Delete a file previously returned by save_upload. Missing files are ignored."""
    if not url or not url.startswith(f"{UPLOAD_URL_PREFIX}/"):
        return
    try:
        os.remove(os.path.join(settings.upload_dir, url.rsplit("/", 1)[1]))
    except FileNotFoundError:
        pass
