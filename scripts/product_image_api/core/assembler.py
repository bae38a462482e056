"""Compose the ordered content parts sent to the generation endpoint.

Three policies exist. Transformation puts the reference images before the
instruction so the model grounds on them; revision leads with the
instruction and then shows the single image to edit; plain shows the
reference (if any) and then the instruction. Optional previous-revision,
logo and character images always follow, each with exactly one clarifying
text part.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .cancellation import CancelToken
from .contracts import (
    Assembly,
    ContentPart,
    GenerationRequest,
    ImagePart,
    PromptMode,
    TextPart,
    describe_parts,
)
from .normalizer import ImageNormalizer

logger = logging.getLogger(__name__)

TRANSFORMATION_MARKER = "IMAGE TRANSFORMATION TASK"
REVISION_MARKERS = ("CRITICAL REVISION INSTRUCTION:", "MANDATORY PRESERVATION RULES:")

PRIMARY_HEADER = "REFERENCE IMAGES - STUDY THESE CAREFULLY BEFORE READING INSTRUCTIONS:"
PRIMARY_LABEL = (
    "IMAGE 1 (PRIMARY REFERENCE): This is the EXACT product you must transform. "
    "Copy ALL colors, materials, and details from this image."
)
SECONDARY_LABEL = (
    "IMAGE 2 (SECONDARY REFERENCE - BACK VIEW): This is the BACK of the SAME product. "
    "Use this to confirm colors, materials, and design from another angle."
)
TRANSFORMATION_REMINDER = (
    "FINAL REMINDER: Your output must be the EXACT SAME product as shown in the reference "
    "images - same colors, same materials, same design - just from a different angle. "
    "DO NOT create a new design."
)
REVISION_REMINDER = (
    "REMINDER: The image above is the EXACT product to modify. Apply ONLY the requested "
    "change while keeping everything else IDENTICAL."
)
SECONDARY_CONSISTENCY = """SECOND REFERENCE IMAGE (BACK VIEW) - STUDY THIS CAREFULLY

The image above is the BACK VIEW of the EXACT SAME product. You now have TWO authoritative references:
IMAGE 1 = FRONT VIEW (primary design source)
IMAGE 2 = BACK VIEW (confirms design from rear)

MANDATORY CONSISTENCY REQUIREMENTS:
1. COLORS must match exactly: main body, trim and accent colors, any visible interior.
2. PROPORTIONS must match exactly: width, height, component sizes.
3. DESIGN ELEMENTS must match exactly: hardware, trim placement, patterns.

Your output MUST look like a photo of the IDENTICAL physical product from a different angle."""
PREVIOUS_REVISION_NOTE = """PREVIOUS REVISION - FOR STRUCTURAL REFERENCE ONLY:
The image above shows a PREVIOUS VERSION of this view.

USE THIS ONLY FOR:
- Camera angle and perspective
- Product positioning in frame
- Composition and layout
- General structural proportions

DO NOT COPY FROM PREVIOUS REVISION:
- Colors, design details, materials or textures. Take all of them from the FRONT VIEW (first reference).

PRIORITY ORDER:
1. FRONT VIEW (first reference) = DEFINITIVE design source for colors, materials, patterns, details
2. BACK VIEW (if provided) = secondary design reference
3. PREVIOUS REVISION (this image) = ONLY camera angle and structural positioning"""
LOGO_NOTE = (
    "IMPORTANT: Use the exact brand logo from the image above and integrate it naturally "
    "into the product design."
)
CHARACTER_NOTE = (
    "IMPORTANT: Use the EXACT person/character from the image above as the model in the scene. "
    "Maintain their appearance, facial features, and identity while having them interact with "
    "or wear the product."
)


def classify_prompt(prompt: str) -> PromptMode:
    """Legacy marker detection for callers that do not pass a mode."""
    if TRANSFORMATION_MARKER in prompt:
        return PromptMode.TRANSFORMATION
    if any(marker in prompt for marker in REVISION_MARKERS):
        return PromptMode.REVISION
    return PromptMode.PLAIN


def resolve_prompt_mode(
    prompt: str,
    has_reference: bool,
    explicit_mode: Optional[PromptMode] = None,
) -> PromptMode:
    mode = explicit_mode if explicit_mode is not None else classify_prompt(prompt)
    if not has_reference:
        return PromptMode.PLAIN
    return mode


def with_reference_clause(prompt: str) -> str:
    if "reference" in prompt.lower():
        return prompt
    return (
        "REFERENCE IMAGE PROVIDED: The first image shows the existing product design.\n\n"
        f"{prompt}\n\n"
        "IMPORTANT: Maintain consistency with the reference image's overall design, style, "
        "and quality while applying the requested changes."
    )


class PartAssembler:
    def __init__(self, normalizer: Optional[ImageNormalizer] = None) -> None:
        self.normalizer = normalizer or ImageNormalizer()

    def assemble(
        self,
        request: GenerationRequest,
        prompt: str,
        cancel: Optional[CancelToken] = None,
    ) -> Assembly:
        has_reference = request.reference_image is not None
        mode = resolve_prompt_mode(prompt, has_reference, request.mode)
        parts: List[ContentPart] = []

        primary = self.normalizer.normalize(request.reference_image, cancel) if has_reference else None
        secondary = None
        if request.additional_reference_image is not None:
            secondary = self.normalizer.normalize(request.additional_reference_image, cancel)

        if mode is PromptMode.TRANSFORMATION:
            parts.append(TextPart(PRIMARY_HEADER))
            parts.append(ImagePart(primary))
            parts.append(TextPart(PRIMARY_LABEL))
            if secondary is not None:
                parts.append(ImagePart(secondary))
                parts.append(TextPart(SECONDARY_LABEL))
            parts.append(TextPart(prompt))
            parts.append(TextPart(TRANSFORMATION_REMINDER))
        elif mode is PromptMode.REVISION:
            parts.append(TextPart(prompt))
            parts.append(ImagePart(primary))
            parts.append(TextPart(REVISION_REMINDER))
            if secondary is not None:
                parts.append(ImagePart(secondary))
                parts.append(TextPart(SECONDARY_CONSISTENCY))
        else:
            if primary is not None:
                parts.append(ImagePart(primary))
                prompt = with_reference_clause(prompt)
            parts.append(TextPart(prompt))
            if secondary is not None:
                parts.append(ImagePart(secondary))
                parts.append(TextPart(SECONDARY_CONSISTENCY))

        if request.previous_revision_image is not None:
            parts.append(ImagePart(self.normalizer.normalize(request.previous_revision_image, cancel)))
            parts.append(TextPart(PREVIOUS_REVISION_NOTE))
        logo = None
        if request.logo_image is not None:
            logo = self.normalizer.optimize_logo(request.logo_image, cancel)
            parts.append(ImagePart(logo))
            parts.append(TextPart(LOGO_NOTE))
        if request.character_image is not None:
            parts.append(ImagePart(self.normalizer.normalize(request.character_image, cancel)))
            parts.append(TextPart(CHARACTER_NOTE))

        logger.debug("Assembled %s parts: %s", mode.value, describe_parts(parts))
        return Assembly(parts=parts, prompt=prompt, mode=mode, primary=primary, logo=logo)

    def assemble_fallback(self, assembly: Assembly, prompt: str) -> Assembly:
        """Safe-prompt parts built from the images already normalized for ``assembly``."""
        parts: List[ContentPart] = []
        if assembly.primary is not None:
            parts.append(ImagePart(assembly.primary))
        if assembly.logo is not None:
            parts.append(ImagePart(assembly.logo))
        parts.append(TextPart(prompt))
        return Assembly(
            parts=parts,
            prompt=prompt,
            mode=PromptMode.PLAIN,
            primary=assembly.primary,
            logo=assembly.logo,
        )


def assemble_parts(
    request: GenerationRequest,
    prompt: str,
    normalizer: Optional[ImageNormalizer] = None,
    cancel: Optional[CancelToken] = None,
) -> List[ContentPart]:
    return PartAssembler(normalizer).assemble(request, prompt, cancel).parts
