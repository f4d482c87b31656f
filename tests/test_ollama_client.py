import json

import httpx
import pytest

from conftest import DummyStream
from prompt_relay.errors import (
    ErrorKind,
    RequestCancelledError,
    StreamReadError,
    UpstreamError,
    UpstreamUnavailableError,
)
from prompt_relay.ollama_client import OllamaClient

BASE_URL = "http://ollama.test:11434"


def streaming_client(stream: DummyStream, captured: dict | None = None) -> OllamaClient:
    async def handler(request: httpx.Request) -> httpx.Response:
        if captured is not None:
            captured["url"] = str(request.url)
            captured["headers"] = dict(request.headers)
            captured["payload"] = json.loads(request.content.decode())
        return httpx.Response(
            200,
            headers={"Content-Type": "application/x-ndjson"},
            stream=stream,
        )

    return OllamaClient(
        BASE_URL, "neural-chat", transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_generate_posts_model_and_prompt():
    captured: dict[str, object] = {}
    client = streaming_client(
        DummyStream([b'{"response":"ok","done":true}\n']), captured
    )

    await client.generate("Hi")

    assert captured["url"] == f"{BASE_URL}/api/generate"
    assert captured["payload"] == {"model": "neural-chat", "prompt": "Hi"}
    assert captured["headers"]["content-type"] == "application/json"


def test_build_request_is_immutable():
    client = OllamaClient(BASE_URL, "llama3")
    request = client.build_request("Hi")

    assert request.model == "llama3"
    with pytest.raises(Exception):
        request.prompt = "changed"


def test_generate_url_tolerates_trailing_slash():
    client = OllamaClient(f"{BASE_URL}/", "llama3")

    assert client.generate_url == f"{BASE_URL}/api/generate"


@pytest.mark.asyncio
async def test_generate_concatenates_streamed_fragments():
    client = streaming_client(
        DummyStream(
            [
                b'{"response":"Hel","done":false}\n',
                b'{"response":"lo","done":true}\n',
            ]
        )
    )

    result = await client.generate("Hi")

    assert result.text == "Hello"
    assert result.done is True


@pytest.mark.asyncio
async def test_generate_reassembles_record_split_across_chunks():
    client = streaming_client(
        DummyStream([b'{"resp', b'onse":"ok","done":true}\n'])
    )

    result = await client.generate("Hi")

    assert result.text == "ok"


@pytest.mark.asyncio
async def test_generate_skips_malformed_line():
    client = streaming_client(
        DummyStream([b"this is not json\n", b'{"response":"x","done":true}\n'])
    )

    result = await client.generate("Hi")

    assert result.text == "x"
    assert result.skipped == 1


@pytest.mark.asyncio
async def test_generate_drains_stream_after_done():
    stream = DummyStream(
        [
            b'{"response":"answer","done":true}\n',
            b'{"response":" trailing","done":false}\n',
        ]
    )
    client = streaming_client(stream)

    result = await client.generate("Hi")

    assert result.text == "answer"
    assert stream.yielded == 2


@pytest.mark.asyncio
async def test_generate_returns_empty_text_for_empty_stream():
    client = streaming_client(DummyStream([]))

    result = await client.generate("Hi")

    assert result.text == ""


@pytest.mark.asyncio
async def test_generate_raises_upstream_error_with_status_and_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    client = OllamaClient(BASE_URL, "neural-chat", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as excinfo:
        await client.generate("Hi")

    assert excinfo.value.kind is ErrorKind.UPSTREAM_ERROR
    assert excinfo.value.status_code == 503
    assert str(excinfo.value) == "Ollama API error: 503, overloaded"


@pytest.mark.asyncio
async def test_generate_does_not_retry_failed_upstream_call():
    attempts: list[int] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(1)
        return httpx.Response(500, text="boom")

    client = OllamaClient(BASE_URL, "neural-chat", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError):
        await client.generate("Hi")

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_generate_raises_on_request_error():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    client = OllamaClient(BASE_URL, "neural-chat", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await client.generate("Hi")

    assert "unable to reach ollama api" in str(excinfo.value).lower()
    assert excinfo.value.kind is ErrorKind.INTERNAL_ERROR


@pytest.mark.asyncio
async def test_generate_reports_timeout():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    client = OllamaClient(
        BASE_URL, "neural-chat", transport=httpx.MockTransport(handler), timeout=5.0
    )

    with pytest.raises(UpstreamUnavailableError) as excinfo:
        await client.generate("Hi")

    assert str(excinfo.value) == "Ollama API timed out after 5s"


@pytest.mark.asyncio
async def test_generate_raises_when_body_cannot_be_read():
    client = streaming_client(
        DummyStream([b'{"response":"a"}\n', b'{"response":"b"}\n'], fail_after=1)
    )

    with pytest.raises(StreamReadError) as excinfo:
        await client.generate("Hi")

    assert "unable to read response body" in str(excinfo.value).lower()


@pytest.mark.asyncio
async def test_generate_stops_reading_when_caller_disconnects():
    stream = DummyStream(
        [
            b'{"response":"a"}\n',
            b'{"response":"b"}\n',
            b'{"response":"c","done":true}\n',
        ]
    )
    client = streaming_client(stream)
    checks: list[int] = []

    async def is_disconnected() -> bool:
        checks.append(1)
        return len(checks) >= 2

    with pytest.raises(RequestCancelledError):
        await client.generate("Hi", is_disconnected=is_disconnected)

    assert stream.yielded == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [301, 302, 307])
async def test_generate_treats_redirect_as_upstream_error(status: int):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status, headers={"Location": "http://elsewhere.test/"}, text="moved"
        )

    client = OllamaClient(BASE_URL, "neural-chat", transport=httpx.MockTransport(handler))

    with pytest.raises(UpstreamError) as excinfo:
        await client.generate("Hi")

    assert excinfo.value.status_code == status
    assert str(excinfo.value) == f"Ollama API error: {status}, moved"
