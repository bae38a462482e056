"""Generation transport registry."""

from __future__ import annotations

from typing import Optional

from .base import GenerationTransport


def get_transport(provider: str = "gemini", api_key: Optional[str] = None) -> GenerationTransport:
    key = provider.strip().lower()
    if key in {"gemini", "google"}:
        from .gemini import GeminiTransport
        return GeminiTransport(api_key=api_key)
    raise ValueError(f"No transport registered for provider '{provider}'.")


__all__ = ["get_transport", "GenerationTransport"]
