"""Incremental decoding of newline-delimited JSON streams.

Ollama's ``/api/generate`` endpoint answers with one JSON object per line.
Transport chunks do not respect line boundaries, so the decoder keeps the
unterminated tail of every chunk and prepends it to the next one.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Optional

from pydantic import ValidationError

from prompt_relay.schemas import GenerateChunk

logger = logging.getLogger(__name__)


class NDJSONDecoder:
    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""
        self._closed = False

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes) -> list[str]:
        """Return the complete, non-empty lines finished by ``chunk``."""
        if self._closed:
            raise RuntimeError("Decoder already closed")

        text = self._pending + self._decoder.decode(chunk)
        *complete, self._pending = text.split("\n")
        return [line.strip() for line in complete if line.strip()]

    def close(self) -> list[str]:
        """Signal end of stream.

        An unterminated remainder is a record the upstream never finished
        sending; it is dropped rather than parsed.
        """
        if self._closed:
            return []
        self._closed = True

        remainder = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if remainder.strip():
            logger.warning(
                "Discarding unterminated line at end of stream: %r", remainder[:200]
            )
        return []


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    decoder = NDJSONDecoder()
    async for chunk in chunks:
        for line in decoder.feed(chunk):
            yield line
    for line in decoder.close():
        yield line


def parse_record(line: str) -> Optional[GenerateChunk]:
    """Parse one stream line, returning ``None`` for malformed records."""
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        logger.warning("Skipping malformed stream line (%s): %r", exc, line[:200])
        return None

    if not isinstance(payload, dict):
        logger.warning(
            "Skipping stream line with unexpected JSON type %s: %r",
            type(payload).__name__,
            line[:200],
        )
        return None

    try:
        return GenerateChunk.model_validate(payload)
    except ValidationError as exc:
        logger.warning(
            "Skipping stream record with invalid fields (%d errors): %r",
            exc.error_count(),
            line[:200],
        )
        return None


async def iter_records(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[Optional[GenerateChunk]]:
    """Yield one item per stream line: a record, or ``None`` if it was malformed."""
    async for line in iter_lines(chunks):
        yield parse_record(line)


__all__ = ["NDJSONDecoder", "iter_lines", "parse_record", "iter_records"]
