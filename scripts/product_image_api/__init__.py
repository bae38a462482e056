"""Product Image Forge public surface."""

from .api import ProductImageService
from .core import (
    CancelToken,
    GeneratedImage,
    GenerationOptions,
    GenerationRequest,
    PromptMode,
    TechPackSource,
)

__all__ = [
    "ProductImageService",
    "CancelToken",
    "GeneratedImage",
    "GenerationOptions",
    "GenerationRequest",
    "PromptMode",
    "TechPackSource",
]
