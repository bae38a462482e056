"""Core data contracts for Product Image Forge."""

from __future__ import annotations

import base64
import binascii
import enum
from dataclasses import dataclass, field, fields
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from .errors import InputError


ImageRef = str

ASPECT_RATIOS = frozenset({"1:1", "2:3", "3:2", "3:4", "4:3", "9:16", "16:9", "21:9"})

TECH_PACK_IMAGE_TYPES = (
    "front",
    "back",
    "vector",
    "detail",
    "technical",
    "construction",
    "callout",
    "measurement",
    "scale",
)


class PromptMode(str, enum.Enum):
    TRANSFORMATION = "transformation"
    REVISION = "revision"
    PLAIN = "plain"


@dataclass(frozen=True)
class GenerationOptions:
    """Recognized per-call options.

    retry_count: upper bound on transport attempts (>= 1).
    fallback_enabled: allow one extra attempt with a safe prompt when the
        model answers with text instead of an image.
    enhance_prompt: append the technical-requirement boilerplate.
    model: model id for the first attempt; the service default when None.
    """

    retry_count: int = 3
    fallback_enabled: bool = True
    enhance_prompt: bool = True
    model: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.retry_count, bool) or not isinstance(self.retry_count, int):
            raise InputError(f"retry_count must be an integer, got {self.retry_count!r}")
        if self.retry_count < 1:
            raise InputError(f"retry_count must be >= 1, got {self.retry_count}")

    @classmethod
    def from_mapping(cls, values: Optional[Mapping[str, Any]]) -> "GenerationOptions":
        if not values:
            return cls()
        known = {f.name for f in fields(cls)}
        kwargs = {}
        unknown = []
        for key, value in values.items():
            name = "retry_count" if key == "retry" else key
            if name not in known:
                unknown.append(key)
                continue
            kwargs[name] = value
        if unknown:
            raise InputError(f"Unknown generation option(s): {', '.join(sorted(unknown))}")
        return cls(**kwargs)


@dataclass
class GenerationRequest:
    prompt: str = ""
    reference_image: Optional[ImageRef] = None
    additional_reference_image: Optional[ImageRef] = None
    previous_revision_image: Optional[ImageRef] = None
    logo_image: Optional[ImageRef] = None
    character_image: Optional[ImageRef] = None
    product_type: Optional[str] = None
    view: Optional[str] = None
    style: Optional[str] = None
    aspect_ratio: str = "1:1"
    mode: Optional[PromptMode] = None
    options: GenerationOptions = field(default_factory=GenerationOptions)

    def __post_init__(self) -> None:
        for name in (
            "reference_image",
            "additional_reference_image",
            "previous_revision_image",
            "logo_image",
            "character_image",
        ):
            if getattr(self, name) == "":
                setattr(self, name, None)
        if isinstance(self.options, Mapping):
            self.options = GenerationOptions.from_mapping(self.options)
        if isinstance(self.mode, str) and not isinstance(self.mode, PromptMode):
            try:
                self.mode = PromptMode(self.mode.strip().lower())
            except ValueError as exc:
                raise InputError(f"Unknown prompt mode: {self.mode!r}") from exc

    def validate(self) -> None:
        if self.reference_image is None:
            dangling = [
                name
                for name in ("additional_reference_image", "previous_revision_image")
                if getattr(self, name) is not None
            ]
            if dangling:
                raise InputError(
                    f"{', '.join(dangling)} requires reference_image to be set"
                )
        if self.aspect_ratio not in ASPECT_RATIOS:
            raise InputError(
                f"Unsupported aspect ratio {self.aspect_ratio!r}; "
                f"expected one of {', '.join(sorted(ASPECT_RATIOS))}"
            )

    def present_images(self) -> dict[str, bool]:
        return {
            "reference_image": self.reference_image is not None,
            "additional_reference_image": self.additional_reference_image is not None,
            "previous_revision_image": self.previous_revision_image is not None,
            "logo_image": self.logo_image is not None,
            "character_image": self.character_image is not None,
        }


@dataclass(frozen=True)
class NormalizedImage:
    mime_type: str
    base64_data: str

    def __post_init__(self) -> None:
        if not self.mime_type.startswith("image/"):
            raise InputError(f"Not an image mime type: {self.mime_type!r}")

    def to_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.base64_data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise InputError("Image payload is not valid base64") from exc


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    image: NormalizedImage


ContentPart = Union[TextPart, ImagePart]


@dataclass
class Assembly:
    parts: List[ContentPart]
    prompt: str
    mode: PromptMode
    primary: Optional[NormalizedImage] = None
    logo: Optional[NormalizedImage] = None


@dataclass
class GenerationMetadata:
    view: Optional[str] = None
    style: Optional[str] = None
    generation_time_ms: int = 0
    model: Optional[str] = None
    attempts: int = 0


@dataclass
class GeneratedImage:
    url: str
    mime_type: str
    prompt: str
    fallback_used: bool = False
    metadata: GenerationMetadata = field(default_factory=GenerationMetadata)


@dataclass(frozen=True)
class TechPackSource:
    product_name: str = "garment"
    reference_image: Optional[ImageRef] = None


def describe_parts(parts: Iterable[ContentPart]) -> Sequence[str]:
    """Short labels for a part list, used in debug logging."""
    labels = []
    for part in parts:
        if isinstance(part, ImagePart):
            labels.append(f"image({part.image.mime_type})")
        else:
            labels.append(f"text({len(part.text)})")
    return labels
