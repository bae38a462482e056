"""Transport retry loop with exponential backoff and model downgrade.

The loop only knows about transport failures; content refusals are
handled one layer up by the service facade.
"""

from __future__ import annotations

import enum
import logging
import random
from dataclasses import dataclass, replace
from typing import Optional, Sequence, Tuple, Union

from product_image_api.providers.base import GenerationConfig, GenerationResponse, GenerationTransport
from .cancellation import CancelToken, run_cancellable, sleep_cancellable
from .config import DEFAULT_FALLBACK_MODEL
from .contracts import ContentPart
from .errors import (
    ContentRefusalError,
    GenerationCancelled,
    InputError,
    RetriesExhausted,
    TransientTransportError,
)

logger = logging.getLogger(__name__)

RETRYABLE_CODES = frozenset({429, 500, 503, 504})
RETRYABLE_STATUSES = frozenset({"INTERNAL", "UNAVAILABLE", "RESOURCE_EXHAUSTED", "DEADLINE_EXCEEDED"})
RETRYABLE_MARKERS = (
    '"code":500',
    '"code":503',
    '"code":429',
    "INTERNAL",
    "UNAVAILABLE",
    "RESOURCE_EXHAUSTED",
    "Internal error",
    "Deadline expired",
    "Service temporarily unavailable",
)


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 2.0
    max_jitter: float = 1.0
    fallback_model: str = DEFAULT_FALLBACK_MODEL


@dataclass(frozen=True)
class RetryState:
    attempt: int
    current_model: str


@dataclass(frozen=True)
class RetryAfter:
    delay: float


@dataclass(frozen=True)
class Fail:
    pass


RetryAction = Union[RetryAfter, Fail]


@dataclass
class TransportResult:
    response: GenerationResponse
    model: str
    attempts: int


def _status_code(exc: BaseException) -> Optional[int]:
    for attr in ("code", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, (InputError, ContentRefusalError, GenerationCancelled)):
        return ErrorKind.FATAL
    if isinstance(exc, TransientTransportError):
        return ErrorKind.TRANSIENT
    code = _status_code(exc)
    if code is not None and code in RETRYABLE_CODES:
        return ErrorKind.TRANSIENT
    status = getattr(exc, "status", None)
    if isinstance(status, str) and status.upper() in RETRYABLE_STATUSES:
        return ErrorKind.TRANSIENT
    if isinstance(exc, TimeoutError) or "timeout" in type(exc).__name__.lower():
        return ErrorKind.TRANSIENT
    message = str(exc)
    compact = message.replace(" ", "")
    if any(marker in message or marker in compact for marker in RETRYABLE_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def backoff_delay(policy: RetryPolicy, attempt: int, rng: random.Random) -> float:
    jitter = rng.uniform(0, policy.max_jitter) if policy.max_jitter > 0 else 0.0
    return policy.base_delay * (2 ** (attempt - 1)) + jitter


def next_state(
    state: RetryState,
    kind: ErrorKind,
    policy: RetryPolicy,
    rng: random.Random,
) -> Tuple[RetryState, RetryAction]:
    """Advance the retry state after a failed attempt."""
    if kind is not ErrorKind.TRANSIENT or state.attempt >= policy.max_retries:
        return state, Fail()
    delay = backoff_delay(policy, state.attempt, rng)
    model = state.current_model
    if model != policy.fallback_model:
        model = policy.fallback_model
    return replace(state, attempt=state.attempt + 1, current_model=model), RetryAfter(delay)


class RetryOrchestrator:
    def __init__(
        self,
        transport: GenerationTransport,
        policy: Optional[RetryPolicy] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self.rng = rng or random.Random()

    def call(
        self,
        parts: Sequence[ContentPart],
        model: str,
        config: GenerationConfig,
        cancel: Optional[CancelToken] = None,
        max_retries: Optional[int] = None,
    ) -> TransportResult:
        policy = self.policy if max_retries is None else replace(self.policy, max_retries=max_retries)
        state = RetryState(attempt=1, current_model=model)
        while True:
            try:
                response = run_cancellable(
                    lambda: self.transport.generate_content(
                        parts, model=state.current_model, config=config
                    ),
                    cancel,
                )
                return TransportResult(response=response, model=state.current_model, attempts=state.attempt)
            except GenerationCancelled:
                raise
            except Exception as exc:
                kind = classify_error(exc)
                logger.error(
                    "Error calling %s with model %s (attempt %d/%d): %s",
                    getattr(self.transport, "name", "transport"),
                    state.current_model,
                    state.attempt,
                    policy.max_retries,
                    exc,
                )
                new_state, action = next_state(state, kind, policy, self.rng)
                if isinstance(action, Fail):
                    if kind is ErrorKind.TRANSIENT:
                        raise RetriesExhausted(state.attempt, state.current_model, exc) from exc
                    raise
                if new_state.current_model != state.current_model:
                    logger.warning(
                        "Retryable error; switching to fallback model %s and retrying in %.0fms",
                        new_state.current_model,
                        action.delay * 1000,
                    )
                else:
                    logger.warning("Retryable error; retrying in %.0fms", action.delay * 1000)
                sleep_cancellable(action.delay, cancel)
                state = new_state
