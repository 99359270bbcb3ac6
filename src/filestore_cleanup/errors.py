"""
Error types and the API error envelope classifier.

The node reports failures inside the response body rather than through the
HTTP status code, so every body is checked against the error envelope.
"""

from dataclasses import dataclass
from typing import Optional, Union

import orjson


class FilestoreCleanupError(Exception):
    pass


class TransportError(FilestoreCleanupError):
    def __init__(self, command, cause):
        self.command = command
        self.cause = cause
        message = f"{command}: {cause}"
        super().__init__(message)


class ApiError(FilestoreCleanupError):
    def __init__(self, text, body=b"", command=None):
        self.text = text
        self.body = body
        self.command = command
        super().__init__(text)

    def __str__(self):
        return self.text


@dataclass(frozen=True)
class ErrorEnvelope:
    """Error object returned by the node's HTTP API."""
    message: str = ""
    error: str = ""  # JSON "Error"
    code: int = 0
    type: str = ""

    @property
    def text(self) -> str:
        """First non-empty of message/error, or "" when this is not an error."""
        if self.message:
            return self.message
        if self.error:
            return self.error
        return ""


# (attribute, JSON name, accepted type)
_ENVELOPE_FIELDS = (
    ("message", "Message", str),
    ("error", "Error", str),
    ("code", "Code", int),
    ("type", "Type", str),
)


def lookup_field(obj: dict, name: str):
    """Exact key first, then a case-insensitive match."""
    if name in obj:
        return obj[name]
    lowered = name.lower()
    for key, value in obj.items():
        if key.lower() == lowered:
            return value
    return None


def parse_envelope(body: Union[bytes, str]) -> Optional[ErrorEnvelope]:
    """
    Decode a response body as an error envelope.

    Returns None when the body is not JSON, not an object, or carries one of
    the envelope fields with the wrong type.
    """
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return None
    return envelope_from_value(data)


def envelope_from_value(data) -> Optional[ErrorEnvelope]:
    """Interpret an already decoded JSON value as an error envelope."""
    if not isinstance(data, dict):
        return None

    values = {}
    for attr, name, kind in _ENVELOPE_FIELDS:
        value = lookup_field(data, name)
        if value is None:
            continue
        if kind is int and (isinstance(value, bool) or not isinstance(value, int)):
            return None
        if kind is str and not isinstance(value, str):
            return None
        values[attr] = value
    return ErrorEnvelope(**values)


def classify_error(body: Union[bytes, str]) -> str:
    """Return the error text carried by body, or "" if body is not an error."""
    envelope = parse_envelope(body)
    if envelope is None:
        return ""
    return envelope.text
