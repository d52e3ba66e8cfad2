"""
Strict decoding of Gemini JSON replies.

Gemini is asked for JSON with a response schema, but the reply text is still
treated as untrusted: it is parsed (tolerating ```json fences and stray prose
around the payload), validated against a pydantic type, and returned as a
DecodeResult. A reply that does not parse, does not validate, or is empty all
come back as the same failure, never as an exception.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Generic, Optional, TypeVar

from pydantic import TypeAdapter, ValidationError

T = TypeVar("T")

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


@dataclass(frozen=True)
class DecodeResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "DecodeResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "DecodeResult[T]":
        return cls(error=error)


def _load_json(raw: str) -> Any:
    text = _FENCE_RE.sub("", raw.strip())
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    # fall back to the outermost array/object embedded in the reply
    for open_char, close_char in (("[", "]"), ("{", "}")):
        start, end = text.find(open_char), text.rfind(close_char) + 1
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end])
            except json.JSONDecodeError:
                continue
    raise ValueError(f"reply is not JSON: {text[:100]!r}")


def decode_json(raw: Optional[str], schema: Any) -> DecodeResult:
    """
    Parse *raw* and validate it against *schema* (a pydantic model or any type
    TypeAdapter accepts, e.g. ``list[str]``).
    """
    if raw is None or not raw.strip():
        return DecodeResult.failure("empty reply")

    try:
        data = _load_json(raw)
    except ValueError as e:
        logging.warning(f"Could not parse Gemini reply: {e}")
        return DecodeResult.failure(str(e))

    try:
        value = TypeAdapter(schema).validate_python(data)
    except ValidationError as e:
        logging.warning(f"Gemini reply failed validation: {e.error_count()} error(s)")
        return DecodeResult.failure(f"schema validation failed: {e}")

    if isinstance(value, (list, str, dict)) and not value:
        return DecodeResult.failure("reply is well-formed but empty")
    return DecodeResult.success(value)
