"""Domain models."""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

from delivery.app.constants import ITERATION_KEY


class MessageDecodeError(ValueError):
    """Raised when an inbound body can never become a valid task."""


@dataclass(frozen=True)
class DeliveryMessage:
    """Decoded task payload. The requeue counter lives inside the payload under ITERATION_KEY."""

    payload: dict[str, Any]

    @staticmethod
    def from_body(raw_body: bytes) -> "DeliveryMessage":
        try:
            decoded = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MessageDecodeError(f"message body is not valid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise MessageDecodeError("message body must be a JSON object")
        return DeliveryMessage(payload=decoded)

    @property
    def iteration(self) -> int:
        """Requeue counter, 0 when absent. Read only after a failed delivery."""
        if ITERATION_KEY not in self.payload:
            return 0
        return _parse_iteration(self.payload[ITERATION_KEY])

    def form_data(self) -> dict[str, Any]:
        """Business data only: the payload without the requeue counter."""
        return {key: value for key, value in self.payload.items() if key != ITERATION_KEY}

    def with_iteration(self, iteration: int) -> "DeliveryMessage":
        payload = dict(self.payload)
        payload[ITERATION_KEY] = iteration
        return DeliveryMessage(payload=payload)


def _parse_iteration(value: Any) -> int:
    if isinstance(value, bool):
        iteration = None
    elif isinstance(value, int):
        iteration = value
    elif isinstance(value, float) and value.is_integer():
        iteration = int(value)
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        iteration = int(value.strip())
    else:
        iteration = None
    if iteration is None or iteration < 0:
        raise MessageDecodeError(f"{ITERATION_KEY} must be a non-negative integer, got {value!r}")
    return iteration


def encode_form_fields(data: Mapping[str, Any]) -> dict[str, str]:
    """Flatten a payload into form fields.

    Nested mappings become ``key[sub]``, sequences ``key[0]``; booleans are sent as
    ``1``/``0`` and ``None`` values are left out.
    """
    fields: dict[str, str] = {}
    for key, value in data.items():
        _encode_field(fields, str(key), value)
    return fields


def _encode_field(fields: dict[str, str], name: str, value: Any) -> None:
    if value is None:
        return
    if isinstance(value, Mapping):
        for key, item in value.items():
            _encode_field(fields, f"{name}[{key}]", item)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _encode_field(fields, f"{name}[{index}]", item)
    elif isinstance(value, bool):
        fields[name] = "1" if value else "0"
    else:
        fields[name] = str(value)
