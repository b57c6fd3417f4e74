from __future__ import annotations

import os
import tempfile
import uuid
from typing import NamedTuple

from flask import current_app

STORAGE_DIRECTORIES = ("templates", "data", "generated", "qr-codes")


class StoredFile(NamedTuple):
    stored_name: str
    absolute_path: str
    relative_path: str


def ensure_dir(path: str) -> None:
    """Create directory if missing (mkdir -p equivalent)."""
    os.makedirs(path, exist_ok=True)


def write_atomic(path: str, data, mode: str = "wb") -> None:
    """Write data to a temporary file then atomically rename to target path."""
    dir_path = os.path.dirname(path)
    ensure_dir(dir_path)
    fd, tmp_path = tempfile.mkstemp(dir=dir_path)
    try:
        with os.fdopen(fd, mode) as f:
            f.write(data)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def storage_root() -> str:
    return current_app.config["STORAGE_ROOT"]


def ensure_storage_directories() -> None:
    root = storage_root()
    ensure_dir(root)
    for key in STORAGE_DIRECTORIES:
        ensure_dir(os.path.join(root, key))


def resolve_stored_path(relative_path: str | None) -> str | None:
    """Absolute path for a stored file, or ``None`` if it escapes the storage root."""
    raw = (relative_path or "").strip().replace("\\", "/").lstrip("/")
    if not raw:
        return None
    root = os.path.realpath(storage_root())
    resolved = os.path.realpath(os.path.join(root, raw))
    if resolved == root or not resolved.startswith(f"{root}{os.sep}"):
        return None
    return resolved


def save_blob(
    data: bytes, dir_key: str, extension: str = "", custom_name: str = ""
) -> StoredFile:
    if dir_key not in STORAGE_DIRECTORIES:
        raise ValueError(f"Unsupported storage directory key: {dir_key}")
    file_name = f"{custom_name or uuid.uuid4()}{extension or ''}"
    relative_path = f"{dir_key}/{file_name}"
    absolute_path = os.path.join(storage_root(), dir_key, file_name)
    write_atomic(absolute_path, data)
    os.chmod(absolute_path, 0o644)
    return StoredFile(file_name, absolute_path, relative_path)


def read_blob(relative_path: str | None) -> bytes:
    if not relative_path:
        raise FileNotFoundError("Stored path is required to read from storage")
    absolute_path = resolve_stored_path(relative_path)
    if not absolute_path:
        raise FileNotFoundError(f"Invalid stored path: {relative_path!r}")
    with open(absolute_path, "rb") as handle:
        return handle.read()


def delete_blob(relative_path: str | None) -> bool:
    absolute_path = resolve_stored_path(relative_path)
    if not absolute_path:
        return False
    try:
        os.remove(absolute_path)
    except FileNotFoundError:
        return False
    return True
