"""Turn image references into canonical (mime, base64) payloads."""

from __future__ import annotations

import base64
import binascii
import io
import logging
from typing import Optional

import requests
from PIL import Image, UnidentifiedImageError

from .cancellation import CancelToken
from .contracts import ImageRef, NormalizedImage
from .errors import FetchError, InputError
from .utils import is_url, mime_from_url, split_data_uri

logger = logging.getLogger(__name__)

LOGO_OPTIMIZE_THRESHOLD = 100 * 1024
LOGO_MAX_SIZE = (512, 512)
LOGO_JPEG_QUALITY = 85


def parse_data_uri(value: str) -> Optional[NormalizedImage]:
    parsed = split_data_uri(value)
    if parsed is None:
        return None
    mime_type, payload = parsed
    if not mime_type.startswith("image/"):
        raise InputError(f"Data URI does not carry an image: {mime_type}")
    return NormalizedImage(mime_type=mime_type, base64_data=payload)


def resolve_content_type(declared: Optional[str], url: str) -> str:
    """Use the declared content type when it is an image type, else guess from the URL."""
    content_type = (declared or "").split(";", 1)[0].strip().lower()
    if content_type.startswith("image/"):
        return content_type
    inferred = mime_from_url(url)
    logger.warning("Invalid content-type %r for %s, using %s", declared, url, inferred)
    return inferred


def shrink_to_jpeg(
    data: bytes,
    *,
    max_size: tuple[int, int] = LOGO_MAX_SIZE,
    quality: int = LOGO_JPEG_QUALITY,
) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
            rgba = img.convert("RGBA")
            flattened = Image.new("RGB", rgba.size, (255, 255, 255))
            flattened.paste(rgba, mask=rgba.split()[-1])
        else:
            flattened = img.convert("RGB")
    flattened.thumbnail(max_size, Image.Resampling.LANCZOS)
    out = io.BytesIO()
    # exif/icc are only written when passed explicitly
    flattened.save(out, format="JPEG", quality=quality, optimize=True)
    return out.getvalue()


class ImageNormalizer:
    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 30.0) -> None:
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout

    def normalize(self, ref: ImageRef, cancel: Optional[CancelToken] = None) -> NormalizedImage:
        if not isinstance(ref, str) or not ref.strip():
            raise InputError("Image reference is empty")
        ref = ref.strip()
        if is_url(ref):
            return self._fetch(ref, cancel)
        parsed = parse_data_uri(ref)
        if parsed is not None:
            return parsed
        return NormalizedImage(mime_type="image/png", base64_data=ref)

    def optimize_logo(self, ref: ImageRef, cancel: Optional[CancelToken] = None) -> NormalizedImage:
        image = self.normalize(ref, cancel)
        try:
            raw = base64.b64decode(image.base64_data)
        except (binascii.Error, ValueError) as exc:
            logger.warning("Logo payload is not decodable, using original: %s", exc)
            return image
        if len(raw) <= LOGO_OPTIMIZE_THRESHOLD:
            logger.debug("Logo is small (%dKB), skipping optimization", len(raw) // 1024)
            return image
        try:
            optimized = shrink_to_jpeg(raw)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            logger.warning("Logo optimization failed, using original: %s", exc)
            return image
        logger.info(
            "Logo optimized from %dKB to %dKB", len(raw) // 1024, len(optimized) // 1024
        )
        return NormalizedImage(
            mime_type="image/jpeg",
            base64_data=base64.b64encode(optimized).decode("ascii"),
        )

    def _fetch(self, url: str, cancel: Optional[CancelToken]) -> NormalizedImage:
        if cancel is not None:
            cancel.raise_if_cancelled()
        timeout = self.timeout
        if cancel is not None and cancel.remaining() is not None:
            timeout = min(timeout, max(cancel.remaining() or 0.0, 0.001))
        try:
            response = self.session.get(url, timeout=timeout)
        except requests.RequestException as exc:
            raise FetchError(url, f"Failed to fetch image from URL: {url}") from exc
        if not 200 <= response.status_code < 300:
            raise FetchError(
                url,
                f"Failed to fetch image from URL: {url} ({response.status_code} {response.reason})",
                status_code=response.status_code,
            )
        mime_type = resolve_content_type(response.headers.get("content-type"), url)
        return NormalizedImage(
            mime_type=mime_type,
            base64_data=base64.b64encode(response.content).decode("ascii"),
        )
