"""Receipt writer for generated image artifacts."""

from __future__ import annotations

import base64
import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from .contracts import GeneratedImage, GenerationRequest
from .telemetry import sanitize_payload
from .utils import extension_from_mime, split_data_uri

_IMAGE_FIELDS = (
    "reference_image",
    "additional_reference_image",
    "previous_revision_image",
    "logo_image",
    "character_image",
)


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return f"<bytes:{len(value)}>"
    if is_dataclass(value):
        return {k: _serialize(v) for k, v in asdict(value).items()}
    if isinstance(value, Mapping):
        return {str(k): _serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return str(value)


def _describe_ref(ref: Optional[str]) -> Optional[str]:
    if ref is None:
        return None
    if ref.startswith(("http://", "https://")):
        return ref
    parsed = split_data_uri(ref)
    if parsed is not None:
        return f"<data-uri:{parsed[0]}:{len(parsed[1])} chars>"
    return f"<base64:{len(ref)} chars>"


def build_receipt(
    *,
    request: GenerationRequest,
    image: GeneratedImage,
    image_path: Path,
    receipt_path: Path,
    telemetry: Optional[Mapping[str, Any]] = None,
) -> dict[str, Any]:
    request_payload = _serialize(request)
    for name in _IMAGE_FIELDS:
        request_payload[name] = _describe_ref(getattr(request, name))
    return {
        "request": request_payload,
        "result": {
            "mime_type": image.mime_type,
            "prompt": image.prompt,
            "fallback_used": image.fallback_used,
            "metadata": _serialize(image.metadata),
        },
        "telemetry": sanitize_payload(telemetry) if telemetry else None,
        "artifacts": {
            "image_path": str(image_path),
            "receipt_path": str(receipt_path),
        },
    }


def write_receipt(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
        handle.write("\n")


def save_generated_image(out_dir: Path, label: str, image: GeneratedImage, stamp: str) -> Path:
    parsed = split_data_uri(image.url)
    if parsed is None:
        raise ValueError("Generated image URL is not a base64 data URI")
    mime_type, payload = parsed
    ext = extension_from_mime(mime_type)
    path = out_dir / f"{label}-{stamp}.{ext}"
    path.write_bytes(base64.b64decode(payload))
    return path
