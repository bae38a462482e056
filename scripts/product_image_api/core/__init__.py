"""Core contracts and helpers."""

from .cancellation import CancelToken
from .contracts import (
    GeneratedImage,
    GenerationMetadata,
    GenerationOptions,
    GenerationRequest,
    NormalizedImage,
    PromptMode,
    TechPackSource,
)

__all__ = [
    "CancelToken",
    "GeneratedImage",
    "GenerationMetadata",
    "GenerationOptions",
    "GenerationRequest",
    "NormalizedImage",
    "PromptMode",
    "TechPackSource",
]
