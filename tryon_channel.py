"""
Tryon-Overlay — Typed Message Channel
=====================================
Publish/subscribe channel between the try-on widget, the calibration
preview surface and whatever opened them.

Messages are flat dicts with a "type" key, e.g.

    {"type": "CALIBRATION_SAVED", "offsetY": 12, "scale": 1.3}

Outgoing messages are validated against SCHEMAS before they leave.
Incoming messages (receive()) that fail validation are logged and
dropped; they never raise into the transport.

The transport is swappable: with no transport, publish() dispatches to
local subscribers (same-process event bus). With a transport callable,
publish() hands it the JSON-encoded message and the far side feeds what
it reads into its own channel's receive().
"""

from __future__ import annotations

import json
import logging
import math
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

_log = logging.getLogger("TryOnChannel")


class MessageValidationError(ValueError):
    """Message does not match the schema registered for its type."""


class MessageType(str, Enum):
    CALIBRATION_INIT = "CALIBRATION_INIT"
    CALIBRATION_SAVED = "CALIBRATION_SAVED"
    TRYON_OPENED = "TRYON_OPENED"
    TRYON_CLOSED = "TRYON_CLOSED"


_NUMBER = "number"
_STRING = "string"
_OPTIONAL_STRING = "string?"

# Required payload fields per message type.
SCHEMAS: Dict[MessageType, Dict[str, str]] = {
    MessageType.CALIBRATION_INIT: {
        "productId": _STRING,
        "modelUrl": _OPTIONAL_STRING,
        "offsetY": _NUMBER,
        "scale": _NUMBER,
        "tryOnType": _STRING,
    },
    MessageType.CALIBRATION_SAVED: {
        "offsetY": _NUMBER,
        "scale": _NUMBER,
    },
    MessageType.TRYON_OPENED: {},
    MessageType.TRYON_CLOSED: {},
}


def is_number(value: Any) -> bool:
    """Finite int/float, excluding bool."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _check_field(kind: str, value: Any) -> bool:
    if kind == _NUMBER:
        return is_number(value)
    if kind == _STRING:
        return isinstance(value, str) and value != ""
    if kind == _OPTIONAL_STRING:
        return value is None or isinstance(value, str)
    return False


@dataclass(frozen=True)
class ChannelMessage:
    type: MessageType
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type.value, **self.payload}

    @classmethod
    def from_dict(cls, data: Any) -> "ChannelMessage":
        """Validate a flat message dict.

        Raises:
            MessageValidationError: unknown type, missing or mistyped field.
        """
        if not isinstance(data, dict):
            raise MessageValidationError(f"Message must be a dict, got {type(data).__name__}")
        try:
            msg_type = MessageType(data.get("type"))
        except ValueError:
            raise MessageValidationError(f"Unknown message type: {data.get('type')!r}") from None

        payload = {k: v for k, v in data.items() if k != "type"}
        for name, kind in SCHEMAS[msg_type].items():
            if kind == _OPTIONAL_STRING and name not in payload:
                continue
            if name not in payload:
                raise MessageValidationError(f"{msg_type.value}: missing field {name!r}")
            if not _check_field(kind, payload[name]):
                raise MessageValidationError(
                    f"{msg_type.value}: field {name!r} must be {kind}, got {payload[name]!r}"
                )
        return cls(type=msg_type, payload=payload)


def encode_message(message: ChannelMessage) -> str:
    return json.dumps(message.to_dict())


def decode_message(raw: Union[str, bytes]) -> dict:
    return json.loads(raw)


Handler = Callable[[dict], None]


class MessageChannel:
    """Validated publish/subscribe channel with a pluggable transport."""

    def __init__(self, name: str = "tryon", transport: Optional[Callable[[str], None]] = None):
        self.name = name
        self._transport = transport
        self._handlers: Dict[MessageType, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, message_type: MessageType, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unregisters it."""
        message_type = MessageType(message_type)
        with self._lock:
            self._handlers[message_type].append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers[message_type]:
                    self._handlers[message_type].remove(handler)

        return unsubscribe

    def publish(self, message: Union[ChannelMessage, dict]) -> None:
        """Validate and send a message.

        Raises:
            MessageValidationError: the message does not match its schema.
        """
        if isinstance(message, dict):
            message = ChannelMessage.from_dict(message)
        else:
            message = ChannelMessage.from_dict(message.to_dict())

        if self._transport is not None:
            self._transport(encode_message(message))
        else:
            self._dispatch(message)

    def receive(self, raw: Union[str, bytes, dict]) -> bool:
        """Accept a message from the transport. Returns False if dropped."""
        try:
            data = raw if isinstance(raw, dict) else decode_message(raw)
            message = ChannelMessage.from_dict(data)
        except (MessageValidationError, ValueError) as e:
            _log.warning("[%s] Dropping invalid message: %s", self.name, e)
            return False
        self._dispatch(message)
        return True

    def _dispatch(self, message: ChannelMessage) -> None:
        with self._lock:
            handlers = list(self._handlers[message.type])
        data = message.to_dict()
        for handler in handlers:
            handler(dict(data))
