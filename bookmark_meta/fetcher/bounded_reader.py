# bookmark_meta/fetcher/bounded_reader.py
"""
Size-capped, incrementally decoded body reader.
"""
from __future__ import annotations

import asyncio
import codecs
from typing import List

from aiohttp import ClientError, ClientResponse

from bookmark_meta.config import DEFAULT_MAX_CONTENT_SIZE
from bookmark_meta.errors import ErrorKind, Rejected
from bookmark_meta.fetcher.models import BoundedRead
from bookmark_meta.logger import get_logger

__all__ = ("read_bounded",)

log = get_logger("reader")


def _decoder_for(charset: str | None) -> codecs.IncrementalDecoder:
    try:
        factory = codecs.getincrementaldecoder(charset or "utf-8")
    except LookupError:
        log.debug("Unknown charset %r, decoding as utf-8", charset)
        factory = codecs.getincrementaldecoder("utf-8")
    return factory(errors="replace")


async def read_bounded(response: ClientResponse, cap_bytes: int = DEFAULT_MAX_CONTENT_SIZE) -> BoundedRead | Rejected:
    """
    Read and decode *response* without ever holding more than *cap_bytes*.

    The read stops at the first chunk that pushes the total over the cap.
    The response is released after a complete read and closed on every
    other exit path, cancellation included.
    """
    url = str(response.url)
    decoder = _decoder_for(response.charset)
    parts: List[str] = []
    consumed = 0
    completed = False
    try:
        async for chunk in response.content.iter_any():
            consumed += len(chunk)
            if consumed > cap_bytes:
                log.debug("Body of %s exceeded %d bytes, aborting", url, cap_bytes)
                return Rejected(
                    ErrorKind.SIZE_LIMIT_EXCEEDED,
                    f"Content size exceeded {cap_bytes} bytes",
                    url=url,
                )
            parts.append(decoder.decode(chunk))
        parts.append(decoder.decode(b"", final=True))
        completed = True
        return BoundedRead(bytes_consumed=consumed, cap=cap_bytes, text="".join(parts))
    except asyncio.TimeoutError:
        return Rejected(ErrorKind.REQUEST_TIMEOUT, "Request timed out while reading the response body.", url=url)
    except ClientError as exc:
        return Rejected(ErrorKind.FETCH_FAILURE, f"Failed to read response body: {exc}", url=url)
    finally:
        if completed:
            response.release()
        else:
            response.close()
