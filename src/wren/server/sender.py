"""Write a finished wren Response to an ASGI ``send`` channel."""

from wren._internal.asgi import Send
from wren.http.response import Response

# Statuses that never carry a message body (RFC 9110 section 6.4.1)
_BODYLESS = frozenset({204, 304})

# Computed from the body at send time
_RESERVED = ("content-type", "content-length")


def _body_allowed(status: int) -> bool:
    return status >= 200 and status not in _BODYLESS


def _encode_headers(response: Response, length: int) -> list[tuple[bytes, bytes]]:
    headers = [(b"content-type", response.content_type.encode("latin-1"))]
    headers.extend(
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in response.headers.items()
        if name.lower() not in _RESERVED
    )
    headers.append((b"content-length", str(length).encode("latin-1")))
    return headers


async def send_response(response: Response, send: Send) -> None:
    """Emit ``http.response.start`` followed by a single ``http.response.body``.

    The body is dropped for 1xx, 204 and 304 so the advertised length is
    always zero for those statuses.
    """
    body = response.body_bytes if _body_allowed(response.status) else b""
    await send(
        {
            "type": "http.response.start",
            "status": response.status,
            "headers": _encode_headers(response, len(body)),
        }
    )
    await send({"type": "http.response.body", "body": body})
