"""Utility helpers for Product Image Forge."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import urlparse

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_DATA_URI_RE = re.compile(r"^data:([^;,]+);base64,(.*)$", re.DOTALL)

_EXTENSION_MIME = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def ensure_out_dir(out_dir: Optional[Path]) -> Path:
    if out_dir is None:
        out_dir = Path("outputs") / "product_image_forge" / utc_timestamp()
    out_dir = Path(out_dir).expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def is_url(value: str) -> bool:
    return bool(_URL_RE.match(value or ""))


def split_data_uri(value: str) -> Optional[Tuple[str, str]]:
    match = _DATA_URI_RE.match(value or "")
    if not match:
        return None
    return match.group(1).strip().lower(), match.group(2)


def mime_from_url(url: str, default: str = "image/png") -> str:
    suffix = Path(urlparse(url).path).suffix.lower()
    return _EXTENSION_MIME.get(suffix, default)


def extension_from_mime(mime_type: Optional[str], fallback: str = "png") -> str:
    if mime_type:
        mime = mime_type.lower()
        if mime.endswith("/jpeg") or mime.endswith("/jpg"):
            return "jpg"
        if mime.endswith("/png"):
            return "png"
        if mime.endswith("/webp"):
            return "webp"
        if "/" in mime:
            return mime.split("/", 1)[1]
    return fallback


def truncate(text: Optional[str], limit: int = 100) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
