"""Error taxonomy for product image generation."""

from __future__ import annotations

from typing import Optional, Sequence


class GenerationError(Exception):
    """Base class for everything raised by the generation core."""


class InputError(GenerationError, ValueError):
    """Caller supplied a malformed reference image or conflicting fields.

    Never retried.
    """


class FetchError(InputError):
    def __init__(self, url: str, message: str, status_code: Optional[int] = None) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class TransportError(GenerationError):
    """Failure reported by the generation endpoint."""

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        status: Optional[str] = None,
    ) -> None:
        self.code = code
        self.status = status
        super().__init__(message)


class TransientTransportError(TransportError):
    """5xx / 429 / timeout class failures; retried with backoff."""


class ContentRefusalError(GenerationError):
    """The model answered, but not with an image."""


class NoImageReturned(ContentRefusalError):
    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(f'The AI model responded with text instead of an image: "{text}"')


class FatalError(GenerationError):
    """Terminal failure; keeps every underlying cause for diagnostics."""

    def __init__(self, message: str, causes: Sequence[BaseException] = ()) -> None:
        self.causes = tuple(causes)
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if not self.causes:
            return base
        details = "; ".join(f"{type(cause).__name__}: {cause}" for cause in self.causes)
        return f"{base} ({details})"


class RetriesExhausted(FatalError):
    def __init__(self, attempts: int, model: str, cause: BaseException) -> None:
        self.attempts = attempts
        self.model = model
        super().__init__(
            f"Generation call failed after {attempts} attempt(s) (last model: {model})",
            causes=(cause,),
        )


class GenerationCancelled(GenerationError):
    """The caller's cancel token fired before the call completed."""
