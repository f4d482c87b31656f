import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.exception_handlers import (
    http_exception_handler as default_http_exception_handler,
)
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from prompt_relay.config import Settings, get_settings
from prompt_relay.ollama_client import OllamaClient
from prompt_relay.relay import PromptRelay, RelayOutcome, method_not_allowed

logger = logging.getLogger(__name__)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info(
        "Prompt relay ready (origin=%s, upstream=%s, model=%s)",
        settings.allowed_origin,
        settings.ollama_base_url,
        settings.ollama_model,
    )
    yield


app = FastAPI(
    title="Prompt Relay",
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)


@lru_cache(maxsize=1)
def get_ollama_client() -> OllamaClient:
    return OllamaClient()


def preflight_response(settings: Settings) -> Response:
    return Response(
        status_code=204,
        headers={
            "Access-Control-Allow-Origin": settings.allowed_origin,
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": "Content-Type",
        },
    )


def outcome_response(outcome: RelayOutcome, settings: Settings) -> JSONResponse:
    return JSONResponse(
        outcome.body,
        status_code=outcome.status_code,
        headers={"Access-Control-Allow-Origin": settings.allowed_origin},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    # Methods outside ALL_METHODS are rejected by the router before relay_prompt runs.
    if exc.status_code == 405:
        settings_factory = app.dependency_overrides.get(get_settings, get_settings)
        logger.info("Rejected %s %s", request.method, request.url.path)
        return outcome_response(method_not_allowed(), settings_factory())
    return await default_http_exception_handler(request, exc)


@app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
async def relay_prompt(
    request: Request,
    settings: Settings = Depends(get_settings),
    ollama_client: OllamaClient = Depends(get_ollama_client),
):
    if request.method == "OPTIONS":
        return preflight_response(settings)

    if request.method != "POST":
        logger.info("Rejected %s %s", request.method, request.url.path)
        return outcome_response(method_not_allowed(), settings)

    body = await request.body()
    outcome = await PromptRelay(ollama_client).run(
        body, is_disconnected=request.is_disconnected
    )
    return outcome_response(outcome, settings)
