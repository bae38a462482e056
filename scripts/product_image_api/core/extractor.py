"""Pull the generated image out of a model response."""

from __future__ import annotations

import base64
import logging

from product_image_api.providers.base import GenerationResponse
from .errors import NoImageReturned
from .utils import truncate

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_TEXT = "No response received."


def extract_image(response: GenerationResponse) -> str:
    """Return the first inline image of the first candidate as a data URI.

    Raises NoImageReturned carrying the model's text when there is none.
    """
    candidates = list(response.candidates or ())
    parts = list(candidates[0].parts or ()) if candidates else []
    for part in parts:
        if part.has_inline_data:
            mime_type = part.mime_type or "image/png"
            data = base64.b64encode(part.data).decode("ascii")
            return f"data:{mime_type};base64,{data}"
    text = "\n".join(part.text for part in parts if part.text).strip()
    logger.error("Model did not return an image. Response: %s", truncate(text, 200) or EMPTY_RESPONSE_TEXT)
    raise NoImageReturned(text or EMPTY_RESPONSE_TEXT)
