from collections.abc import AsyncIterator

import httpx


class DummyStream(httpx.AsyncByteStream):
    def __init__(self, chunks: list[bytes], fail_after: int | None = None) -> None:
        self._chunks = chunks
        self._fail_after = fail_after
        self.yielded = 0

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self._chunks):
            if self._fail_after is not None and index >= self._fail_after:
                raise httpx.ReadError("connection reset")
            self.yielded += 1
            yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:  # pragma: no cover - simple delegation
        return self.aiter_bytes()

    async def aclose(self) -> None:  # pragma: no cover - nothing to close in tests
        return None
