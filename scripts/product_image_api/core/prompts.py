"""Prompt templates for product image generation."""

from __future__ import annotations

import re
from typing import Dict, Mapping, Optional

from .errors import InputError


_STUDIO = """Perfectly centered and isolated on a neutral light-grey background.
Lit with clean, even studio lighting to eliminate shadows.
Razor-sharp focus, ultra-high detail, 8k resolution."""

_CLEAN_PRODUCT_RULES = """STRICT REQUIREMENTS:
- Draw clean product
- NO circular letter indicators (A, B, C, D, etc.)
- NO position indicators at key measurement points
- NO measurement values, NO numbers, NO dimension lines
- NO arrows, NO text labels, NO units
- ONLY show the product shape
- Keep it minimal and clean"""

PROMPT_TEMPLATES: Dict[str, Dict[str, str]] = {
    "photorealistic": {
        "front": f"Commercial product photography of [PRODUCT], front view.\n{_STUDIO}",
        "back": f"Commercial product photography of [PRODUCT], back view.\n{_STUDIO}",
        "side": f"Commercial product photography of [PRODUCT], side profile view.\n{_STUDIO}",
        "bottom": f"Commercial product photography of [PRODUCT], bottom view.\n{_STUDIO}",
        "illustration": (
            "A photorealistic lifestyle illustration of [PRODUCT].\n"
            "The product is shown in a real-world context, such as a person using it "
            "in a bright, modern cafe or an urban park.\n"
            "The background should be dynamic but softly blurred to keep the product as the hero.\n"
            "Use natural, warm lighting to create an inviting feel.\n"
            "Cinematic quality, highly detailed, 8k resolution."
        ),
    },
    "technical": {
        "front": (
            "Create a professional, flat technical sketch of the front view for [PRODUCT].\n"
            "Style: Black and white vector-style line drawing.\n"
            "Perspective: Strictly 2D flat view, no 3D effects.\n"
            "Color: No color, gradients, or shading. Clean line art on white background.\n"
            "Lines: Crisp, clean, consistent black outlines.\n"
            "Include: Full silhouette, all seams, pockets, hardware, stitching details.\n"
            "Output: High-quality technical flat for factory-ready tech pack."
        ),
        "back": (
            "Create a professional, flat technical sketch of the back view for [PRODUCT].\n"
            "Style: Black and white vector-style line drawing.\n"
            "Perspective: Strictly 2D flat view, no 3D effects.\n"
            "Color: No color, gradients, or shading. Clean line art on white background.\n"
            "Lines: Crisp, clean, consistent black outlines.\n"
            "Include: Complete back silhouette, all back seams, design details, stitching.\n"
            "Output: High-quality technical flat consistent with front view."
        ),
        "vector": (
            "Flat technical drawing of [PRODUCT], black and white, no color, vector-style line art,\n"
            "front and back view, no perspective, clean outlines only, no fills, no shading.\n"
            "Technical illustration style suitable for manufacturing documentation."
        ),
        "detail": (
            "Extreme close-up macro photography of [DETAIL] on [PRODUCT],\n"
            "high resolution detail shot, professional product photography, showing texture "
            "and construction details,\n"
            "clean white studio background, soft even lighting, sharp focus,\n"
            "showing stitching, fabric texture, hardware details, manufacturing quality."
        ),
        "measurement": (
            "Technical line drawing of [PRODUCT].\n"
            f"{_CLEAN_PRODUCT_RULES}\n"
            "- Black and white technical illustration\n"
            "Professional minimalist style for reference documentation."
        ),
        "construction": (
            "Technical construction drawing of [PRODUCT].\n"
            f"{_CLEAN_PRODUCT_RULES}\n"
            "Do NOT include any numbered or lettered circles or bubbles.\n"
            "Maintain a clean, professional engineering documentation style with balanced layout."
        ),
        "callout": (
            "Technical specification drawing of [PRODUCT].\n"
            f"{_CLEAN_PRODUCT_RULES}\n"
            "- Style: Black and white, clean vector style, factory-ready illustration."
        ),
        "scale": (
            "Technical scale diagram of [PRODUCT] with proportional accuracy.\n"
            "Accurate proportional relationships between all components.\n"
            f"{_CLEAN_PRODUCT_RULES}\n"
            "Professional ruler scale or measurement grid overlay."
        ),
        "technical": (
            "Technical specification drawing of [PRODUCT] with comprehensive annotations.\n"
            "Professional flat technical drawing showing complete construction details.\n"
            "Black and white vector-style line art with clean view.\n"
            f"{_CLEAN_PRODUCT_RULES}\n"
            "Suitable for manufacturing and high-quality tech pack documentation."
        ),
    },
    "vector": {
        "front": (
            "Vector illustration of [PRODUCT], front view.\n"
            "Pure vector graphics with clean lines and shapes.\n"
            "Flat design aesthetic with no gradients or shadows.\n"
            "Suitable for digital and print media.\n"
            "Scalable without quality loss."
        ),
        "back": (
            "Vector illustration of [PRODUCT], back view.\n"
            "Pure vector graphics with clean lines and shapes.\n"
            "Flat design aesthetic with no gradients or shadows.\n"
            "Consistent with front view style.\n"
            "Scalable without quality loss."
        ),
    },
    "detail": {
        "hardware": (
            "Macro photography of hardware components on [PRODUCT].\n"
            "Extreme close-up showing zippers, buttons, snaps, or fasteners.\n"
            "Crystal clear detail of metal finishes and mechanisms.\n"
            "Professional product photography with perfect lighting."
        ),
        "fabric": (
            "Macro photography of fabric texture on [PRODUCT].\n"
            "Extreme close-up showing weave pattern and material quality.\n"
            "Clear detail of fabric construction and surface texture.\n"
            "Professional textile photography with even lighting."
        ),
        "stitching": (
            "Macro photography of stitching details on [PRODUCT].\n"
            "Extreme close-up showing stitch quality and construction.\n"
            "Clear detail of seam construction and thread quality.\n"
            "Professional garment photography with sharp focus."
        ),
        "logo": (
            "Macro photography of branding/logo on [PRODUCT].\n"
            "Extreme close-up showing print or embroidery quality.\n"
            "Clear detail of brand application method.\n"
            "Professional product photography with perfect clarity."
        ),
    },
}

_PLACEHOLDER_RE = re.compile(r"\[([A-Z_]+)\]")


def get_prompt_template(style: str, view: str) -> Optional[str]:
    return PROMPT_TEMPLATES.get(style, {}).get(view)


def replace_placeholders(template: str, replacements: Mapping[str, str]) -> str:
    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key in replacements:
            return str(replacements[key])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, template)


def build_prompt_from_template(
    product: str,
    view: str = "front",
    style: str = "photorealistic",
    extra: Optional[Mapping[str, str]] = None,
) -> str:
    template = get_prompt_template(style, view)
    if template is None:
        raise InputError(f"No template found for style: {style}, view: {view}")
    replacements = {"PRODUCT": product}
    if extra:
        replacements.update(extra)
    return replace_placeholders(template, replacements)


def fallback_prompt(product_type: str, view: Optional[str] = None, style: Optional[str] = None) -> str:
    """Minimal prompt used after the model refused the original one."""
    technical = style == "technical"
    lines = [
        f"Create a professional {'technical drawing' if technical else 'product image'} of {product_type}.",
    ]
    if technical:
        lines.append(
            "The image should be a clean, vector-style line art suitable for manufacturing "
            "documentation. Show clear construction details and accurate proportions."
        )
    else:
        lines.append(
            "The image should be a high-quality product photograph with professional lighting "
            "and composition. Show the product clearly with all important details visible."
        )
    if view:
        lines.append(f"Show the {view} view of the product.")
    lines.append("Ensure the final image is professional quality suitable for commercial use.")
    return "\n".join(lines)


def generic_fallback_prompt() -> str:
    return "\n".join(
        [
            "Generate a simple product image.",
            "Show the product on a white background.",
            "Professional product photography style.",
            "Front view only.",
            "No text or labels.",
        ]
    )


def enhance_prompt(prompt: str, style: Optional[str] = None) -> str:
    quality = "technical illustration" if style == "technical" else "photography"
    requirements = "\n".join(
        [
            "Technical Requirements:",
            "- Manufacturing-ready precision and clarity",
            "- Fashion industry standard compliance",
            f"- Professional {quality} quality",
            "- Multi-view consistency for tech packs",
            "- CRITICAL: Product must fill at least 85% of the frame",
            "- CRITICAL: Show product at maximum size while maintaining proper proportions",
            "- CRITICAL: Minimize empty space around the product",
            "- High detail level with crisp, sharp rendering",
            "- Studio-quality lighting and composition",
        ]
    )
    return f"[Product Design Image Generation]\n{prompt}\n{requirements}"
