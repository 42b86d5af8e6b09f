"""HTTP response value produced by every request.

A ``Response`` is the ResponseTuple of the pipeline: payload, status and
header map. Handlers rarely build one directly; they return
``(payload, status)`` or ``(payload, status, headers)`` and the pipeline
normalizes it with ``Response.from_result``.
"""

import json as json_module
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Response:
    """An immutable HTTP response: payload, status and headers."""

    payload: Any = None
    status: int = 200
    headers: Mapping[str, str] = field(default_factory=dict)

    # -- Construction --

    @classmethod
    def from_result(cls, result: Any) -> "Response":
        """Normalize a handler return value.

        Accepts a ``Response``, ``(payload, status)``,
        ``(payload, status, headers)``, or a bare payload (status 200).
        A ``None`` status means 200.
        """
        if isinstance(result, Response):
            return result
        if isinstance(result, tuple) and len(result) in (2, 3):
            status = result[1]
            if status is None or isinstance(status, int):
                headers = result[2] if len(result) == 3 else None
                return cls(payload=result[0], status=status or 200, headers=dict(headers or {}))
        return cls(payload=result)

    # -- Serialization --

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        if isinstance(self.payload, bytes):
            return "application/octet-stream"
        if isinstance(self.payload, str):
            return "text/plain; charset=utf-8"
        return "application/json"

    @property
    def body_bytes(self) -> bytes:
        """Encode the payload: raw bytes, UTF-8 text, or JSON."""
        if isinstance(self.payload, bytes):
            return self.payload
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return json_module.dumps(self.payload, default=str).encode("utf-8")
