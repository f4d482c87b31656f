import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Optional

import httpx

from prompt_relay.aggregator import AggregateResult, aggregate
from prompt_relay.config import get_settings
from prompt_relay.errors import (
    RequestCancelledError,
    StreamReadError,
    UpstreamError,
    UpstreamUnavailableError,
)
from prompt_relay.ndjson import iter_records
from prompt_relay.schemas import GenerateRequest

logger = logging.getLogger(__name__)

OLLAMA_GENERATE_PATH = "/api/generate"

DisconnectCheck = Callable[[], Awaitable[bool]]


class OllamaClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.ollama_base_url).rstrip("/")
        self.model = model or settings.ollama_model
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.ollama_timeout

    @property
    def generate_url(self) -> str:
        return f"{self.base_url}{OLLAMA_GENERATE_PATH}"

    def build_request(self, prompt: str) -> GenerateRequest:
        return GenerateRequest(model=self.model, prompt=prompt)

    async def generate(
        self,
        prompt: str,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AggregateResult:
        payload = self.build_request(prompt)
        logger.info("Forwarding prompt to %s (model=%s)", self.generate_url, payload.model)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                async with client.stream(
                    "POST",
                    self.generate_url,
                    headers={"Content-Type": "application/json"},
                    json=payload.model_dump(),
                ) as response:
                    if not response.is_success:
                        await response.aread()
                        raise UpstreamError(response.status_code, response.text)
                    result = await self._consume(response, is_disconnected)
        except httpx.RequestError as exc:
            raise UpstreamUnavailableError(self._format_request_error(exc)) from exc

        logger.info(
            "Upstream stream closed (records=%d, skipped=%d, done=%s, chars=%d)",
            result.records,
            result.skipped,
            result.done,
            len(result.text),
        )
        return result

    async def _consume(
        self,
        response: httpx.Response,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AggregateResult:
        result = await aggregate(iter_records(self._read_chunks(response, is_disconnected)))
        if not result.done:
            logger.warning("Upstream stream closed without a done record")
        return result

    async def _read_chunks(
        self,
        response: httpx.Response,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                if is_disconnected is not None and await is_disconnected():
                    raise RequestCancelledError()
                yield chunk
        except httpx.StreamError as exc:
            raise StreamReadError("Unable to read response body") from exc
        except httpx.TransportError as exc:
            raise StreamReadError(f"Unable to read response body: {exc}") from exc

    def _format_request_error(self, exc: httpx.RequestError) -> str:
        if isinstance(exc, httpx.TimeoutException):
            return f"Ollama API timed out after {self._timeout:g}s"
        detail = str(exc)
        if detail:
            return f"Unable to reach Ollama API: {detail}"
        return "Unable to reach Ollama API"


__all__ = ["OLLAMA_GENERATE_PATH", "OllamaClient"]
