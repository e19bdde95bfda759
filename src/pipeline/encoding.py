"""Transport encoding of video payloads."""
from __future__ import annotations

import asyncio
import base64

from .types import SourceMedia, TransportPayload


def encode_bytes(data: bytes, media_type: str) -> TransportPayload:
    return TransportPayload(
        data=base64.b64encode(data).decode("ascii"),
        media_type=media_type,
        source_bytes=len(data),
    )


def encode_file(source: SourceMedia) -> TransportPayload:
    return encode_bytes(source.path.read_bytes(), source.media_type)


async def encode_source(source: SourceMedia) -> TransportPayload:
    """Base64-encode ``source`` off the event loop."""
    return await asyncio.to_thread(encode_file, source)


__all__ = ["encode_bytes", "encode_file", "encode_source"]
