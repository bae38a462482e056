"""Per-call operation log for generation telemetry."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, MutableMapping, Optional

logger = logging.getLogger(__name__)

TelemetrySink = Callable[[Mapping[str, Any]], None]

_OMITTED_KEYS = {"base64_data", "image_bytes", "data", "inline_data"}


def sanitize_payload(payload: Any) -> Any:
    if payload is None:
        return None
    if isinstance(payload, (str, int, float, bool)):
        if isinstance(payload, str) and payload.startswith("data:") and len(payload) > 100:
            return payload[:100] + "..."
        return payload
    if isinstance(payload, bytes):
        return f"<bytes:{len(payload)}>"
    if isinstance(payload, Mapping):
        sanitized: MutableMapping[str, Any] = {}
        for key, value in payload.items():
            if str(key).lower() in _OMITTED_KEYS:
                sanitized[str(key)] = "<omitted>"
                continue
            sanitized[str(key)] = sanitize_payload(value)
        return sanitized
    if isinstance(payload, (list, tuple)):
        return [sanitize_payload(item) for item in payload]
    return str(payload)


class OperationLog:
    def __init__(
        self,
        function_name: str,
        model: str,
        provider: str = "gemini",
        sink: Optional[TelemetrySink] = None,
    ) -> None:
        self._started = time.monotonic()
        self._sink = sink
        self.record: dict[str, Any] = {
            "function_name": function_name,
            "model": model,
            "provider": provider,
            "operation_type": "image_generation",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "input": {},
            "output": {},
            "performance": {"duration_ms": 0, "status": "success"},
            "context": {},
        }

    def set_input(self, **values: Any) -> "OperationLog":
        self.record["input"] = dict(values)
        return self

    def set_output(self, **values: Any) -> "OperationLog":
        self.record["output"].update(values)
        return self

    def set_context(self, **values: Any) -> "OperationLog":
        self.record["context"].update(values)
        return self

    def set_error(self, error: BaseException | str) -> "OperationLog":
        self.record["output"]["error"] = str(error)
        self.record["performance"]["status"] = "error"
        return self

    def complete(self) -> Mapping[str, Any]:
        self.record["performance"]["duration_ms"] = int((time.monotonic() - self._started) * 1000)
        record = sanitize_payload(self.record)
        status = record["performance"]["status"]
        log = logger.info if status == "success" else logger.warning
        log(
            "%s model=%s status=%s duration_ms=%s fallback=%s",
            record["function_name"],
            record["output"].get("model", record["model"]),
            status,
            record["performance"]["duration_ms"],
            record["output"].get("fallback_used", False),
        )
        if self._sink is not None:
            try:
                self._sink(record)
            except Exception:
                logger.exception("Telemetry sink failed")
        return record
