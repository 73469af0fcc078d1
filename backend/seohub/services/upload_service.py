"""Validation and local storage of uploaded files.

Two call-sites:

* ``POST /api/upload`` stores an agency logo via :func:`store_logo`.
* ``POST /api/orders/{id}/upload`` stores a deliverable via
  :func:`store_deliverable`.

Files land under ``static/uploads`` and are served from ``/static/uploads``.
"""

from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Any
from typing import Dict
from typing import Final

from fastapi import UploadFile
from fastapi import status
from fastapi.exceptions import HTTPException

from seohub.config import get_settings
from seohub.constants import STATIC_DIR
from seohub.utils.time import utc_now

MAX_LOGO_BYTES: Final[int] = 5 * 1024 * 1024
MAX_DELIVERABLE_BYTES: Final[int] = 10 * 1024 * 1024

LOGO_MIME: Final[dict[str, str]] = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}

UPLOADS_DIR = STATIC_DIR / "uploads"

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def _public_url(path: Path) -> str:
    return f"{get_settings().app_url}/static/uploads/{path.relative_to(UPLOADS_DIR).as_posix()}"


def _write(subdir: str, filename: str, raw: bytes) -> Path:
    target_dir = UPLOADS_DIR / subdir
    target_dir.mkdir(parents=True, exist_ok=True)
    dest = target_dir / filename
    try:
        dest.write_bytes(raw)
    except OSError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload file",
        ) from exc
    return dest


def store_logo(upload: UploadFile) -> Dict[str, Any]:
    ext = LOGO_MIME.get(upload.content_type or "")
    if ext is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Only JPEG, PNG, and WebP images are allowed.",
        )

    raw = upload.file.read()
    if len(raw) > MAX_LOGO_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File too large. Maximum size is 5MB.")

    public_id = f"logos/{uuid.uuid4().hex}"
    dest = _write("logos", f"{public_id.split('/')[-1]}.{ext}", raw)
    return {"url": _public_url(dest), "publicId": public_id, "format": ext, "bytes": len(raw)}


def store_deliverable(upload: UploadFile, *, order_id: int, user_id: int, description: str = "") -> Dict[str, Any]:
    """Persist a deliverable and return the record appended to ``order.deliverables``."""

    raw = upload.file.read()
    if len(raw) > MAX_DELIVERABLE_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File size must be less than 10MB")

    filename = _SAFE_NAME.sub("_", upload.filename or "upload") or "upload"
    deliverable_id = f"del_{uuid.uuid4().hex[:12]}"
    dest = _write(f"orders/{order_id}", f"{deliverable_id}-{filename}", raw)
    content_type = upload.content_type or "application/octet-stream"

    return {
        "id": deliverable_id,
        "type": "image" if content_type.startswith("image/") else "document",
        "url": _public_url(dest),
        "filename": upload.filename or filename,
        "size": len(raw),
        "contentType": content_type,
        "description": description,
        "uploadedAt": utc_now().isoformat(),
        "uploadedBy": user_id,
    }
