import json
import logging
from collections.abc import Mapping, Sequence
from typing import Any

logger = logging.getLogger(__name__)

_RECEIVED_PREVIEW_CHARS = 200


class TelemetryPayloadError(ValueError):
    """Client-side telemetry problem, reported back as a 400 response body."""

    status_code = 400

    def __init__(self, error: str, details: str, **extra: Any):
        super().__init__(f"{error}: {details}")
        self.error = error
        self.details = details
        self.extra = extra

    def to_response(self) -> dict[str, Any]:
        body = {"error": self.error, "details": self.details}
        body.update(self.extra)
        return body


def safely_get_nested_property(obj: Any, path: Sequence[str], default: Any = None) -> Any:
    """Read ``obj[path[0]][path[1]]...`` without raising.

    ``obj`` may also be a JSON-encoded string, which is parsed once before
    traversal. Missing keys, ``None`` values and non-mapping intermediates
    all resolve to ``default``.
    """
    if obj is None or obj == "":
        return default

    current = obj
    if isinstance(current, (str, bytes, bytearray)):
        try:
            current = json.loads(current)
        except (TypeError, ValueError) as exc:
            logger.debug("Nested read on non-JSON string (%s): %s", list(path), exc)
            return default

    for key in path:
        if not isinstance(current, Mapping):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


def parse_telemetry_body(raw: bytes | str) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        text = raw.decode("utf-8", errors="replace")
    else:
        text = raw or ""
    text = text.strip()

    if not text:
        raise TelemetryPayloadError(
            "Invalid JSON in request body",
            "Request body is empty",
            received_data="",
            tip="Send the telemetry object as a JSON request body",
        )

    # Some clients template the body twice and wrap it in an extra brace pair.
    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1].strip()

    try:
        payload = json.loads(text)
    except ValueError as exc:
        raise TelemetryPayloadError(
            "Invalid JSON in request body",
            str(exc),
            received_data=text[:_RECEIVED_PREVIEW_CHARS],
            tip="Check for doubled braces or unquoted keys in the telemetry body",
        ) from exc

    if not isinstance(payload, dict):
        raise TelemetryPayloadError(
            "Invalid telemetry payload",
            f"Expected a JSON object, got {type(payload).__name__}",
            received_data=text[:_RECEIVED_PREVIEW_CHARS],
            tip="Wrap the telemetry sections in a single JSON object",
        )
    return payload


def resolve_device_identifier(payload: Mapping[str, Any]) -> str:
    for candidate in (
        payload.get("android_id"),
        payload.get("device_id"),
        safely_get_nested_property(payload, ["device_info", "android_id"]),
    ):
        if candidate is None:
            continue
        value = str(candidate).strip()
        if value:
            return value

    raise TelemetryPayloadError(
        "Missing device identifier",
        "Provide android_id, device_id or device_info.android_id",
        required=["android_id", "device_id", "device_info.android_id"],
        received_keys=sorted(payload.keys()),
    )
