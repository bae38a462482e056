"""Generation transport interfaces."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

from product_image_api.core.contracts import ContentPart


@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.1
    response_modalities: Sequence[str] = ("TEXT", "IMAGE")
    aspect_ratio: str = "1:1"


@dataclass
class ResponsePart:
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None

    @property
    def has_inline_data(self) -> bool:
        return self.data is not None


@dataclass
class Candidate:
    parts: Sequence[ResponsePart] = ()
    finish_reason: Optional[str] = None


@dataclass
class GenerationResponse:
    candidates: Sequence[Candidate] = ()
    model: Optional[str] = None
    usage: dict = field(default_factory=dict)


class GenerationTransport(Protocol):
    name: str

    def generate_content(
        self,
        parts: Sequence[ContentPart],
        *,
        model: str,
        config: GenerationConfig,
    ) -> GenerationResponse:
        ...
