"""Gemini (google-genai) generation transport."""

from __future__ import annotations

import base64
import os
from typing import Any, Dict, List, Mapping, Optional, Sequence

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from product_image_api.core.contracts import ContentPart, ImagePart, TextPart
from product_image_api.core.errors import TransientTransportError, TransportError
from .base import Candidate, GenerationConfig, GenerationResponse, ResponsePart


RETRYABLE_CODES = frozenset({429, 500, 503, 504})


def _resolve_api_key(api_key: Optional[str]) -> str:
    key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not key:
        raise RuntimeError(
            "GEMINI_API_KEY environment variable is not set. Please provide a valid Gemini API key."
        )
    return key


def to_genai_parts(parts: Sequence[ContentPart]) -> List[types.Part]:
    converted: List[types.Part] = []
    for part in parts:
        if isinstance(part, TextPart):
            converted.append(types.Part(text=part.text))
        elif isinstance(part, ImagePart):
            converted.append(
                types.Part(
                    inline_data=types.Blob(
                        data=part.image.to_bytes(),
                        mime_type=part.image.mime_type,
                    )
                )
            )
        else:
            raise TypeError(f"Unsupported content part: {type(part)}")
    return converted


def build_content_config(config: GenerationConfig) -> types.GenerateContentConfig:
    config_kwargs: Dict[str, Any] = {
        "temperature": config.temperature,
        "response_modalities": list(config.response_modalities),
    }
    if config.aspect_ratio:
        config_kwargs["image_config"] = types.ImageConfig(aspect_ratio=config.aspect_ratio)
    return types.GenerateContentConfig(**config_kwargs)


def _usage_dict(usage: Any) -> Dict[str, Any]:
    if usage is None:
        return {}
    if isinstance(usage, Mapping):
        return dict(usage)
    if hasattr(usage, "model_dump"):
        return {k: v for k, v in usage.model_dump().items() if v is not None}
    return {}


def normalize_response(response: Any, model: str) -> GenerationResponse:
    candidates: List[Candidate] = []
    for candidate in getattr(response, "candidates", None) or []:
        content = getattr(candidate, "content", None)
        raw_parts = getattr(content, "parts", None) or []
        parts: List[ResponsePart] = []
        for part in raw_parts:
            inline_data = getattr(part, "inline_data", None)
            data = getattr(inline_data, "data", None) if inline_data is not None else None
            if data is not None:
                if isinstance(data, str):
                    data = base64.b64decode(data)
                parts.append(ResponsePart(data=data, mime_type=getattr(inline_data, "mime_type", None)))
                continue
            text = getattr(part, "text", None)
            if text:
                parts.append(ResponsePart(text=text))
        finish_reason = getattr(candidate, "finish_reason", None)
        candidates.append(
            Candidate(parts=parts, finish_reason=str(finish_reason) if finish_reason is not None else None)
        )
    return GenerationResponse(
        candidates=candidates,
        model=model,
        usage=_usage_dict(getattr(response, "usage_metadata", None)),
    )


def translate_api_error(exc: genai_errors.APIError) -> TransportError:
    code = getattr(exc, "code", None)
    status = getattr(exc, "status", None)
    message = getattr(exc, "message", None) or str(exc)
    text = f"Gemini API error {code} {status}: {message}"
    if isinstance(code, int) and code in RETRYABLE_CODES:
        return TransientTransportError(text, code=code, status=status)
    return TransportError(text, code=code, status=status)


class GeminiTransport:
    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, client: Optional[genai.Client] = None) -> None:
        self.client = client if client is not None else genai.Client(api_key=_resolve_api_key(api_key))

    def generate_content(
        self,
        parts: Sequence[ContentPart],
        *,
        model: str,
        config: GenerationConfig,
    ) -> GenerationResponse:
        contents = types.Content(role="user", parts=to_genai_parts(parts))
        try:
            response = self.client.models.generate_content(
                model=model,
                contents=contents,
                config=build_content_config(config),
            )
        except genai_errors.APIError as exc:
            raise translate_api_error(exc) from exc
        return normalize_response(response, model)
