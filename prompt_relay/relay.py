"""One request/response cycle of the prompt relay.

``PromptRelay.run`` is the only place where failures become an outbound
error body; the stages below it raise ``RelayError`` subclasses tagged with
an ``ErrorKind`` and the mapping to a status code happens in one table.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import ValidationError

from prompt_relay.aggregator import AggregateResult
from prompt_relay.errors import (
    UNKNOWN_ERROR_MESSAGE,
    BadInputError,
    ErrorKind,
    RelayError,
)
from prompt_relay.ollama_client import DisconnectCheck
from prompt_relay.schemas import ErrorResponse, PromptRequest, PromptResponse

logger = logging.getLogger(__name__)

PROMPT_REQUIRED_MESSAGE = "Prompt is required"
INVALID_JSON_MESSAGE = "Request body must be valid JSON"
METHOD_NOT_ALLOWED_MESSAGE = "Method Not Allowed"

# Bad input shares the generic 500 status.
STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.BAD_INPUT: 500,
    ErrorKind.METHOD_NOT_ALLOWED: 405,
    ErrorKind.UPSTREAM_ERROR: 500,
    ErrorKind.INTERNAL_ERROR: 500,
    ErrorKind.CANCELLED: 499,
}


class RelayState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    AWAITING_UPSTREAM = "awaiting_upstream"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = frozenset({RelayState.COMPLETED, RelayState.FAILED})


class GenerateClient(Protocol):
    async def generate(
        self, prompt: str, is_disconnected: Optional[DisconnectCheck] = None
    ) -> AggregateResult: ...


@dataclass(frozen=True)
class RelayOutcome:
    status_code: int
    body: dict[str, Any]
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    @classmethod
    def success(cls, text: str) -> "RelayOutcome":
        return cls(200, PromptResponse(response=text).model_dump())

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "RelayOutcome":
        return cls(
            STATUS_BY_KIND[kind],
            ErrorResponse(error=message or UNKNOWN_ERROR_MESSAGE).model_dump(),
            kind,
        )


def method_not_allowed() -> RelayOutcome:
    return RelayOutcome.failure(ErrorKind.METHOD_NOT_ALLOWED, METHOD_NOT_ALLOWED_MESSAGE)


def parse_prompt(body: bytes) -> PromptRequest:
    try:
        payload = json.loads(body or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadInputError(INVALID_JSON_MESSAGE) from exc

    if not isinstance(payload, dict):
        raise BadInputError(PROMPT_REQUIRED_MESSAGE)

    try:
        return PromptRequest.model_validate(payload)
    except ValidationError as exc:
        raise BadInputError(PROMPT_REQUIRED_MESSAGE) from exc


class PromptRelay:
    def __init__(self, client: GenerateClient) -> None:
        self._client = client
        self.state = RelayState.IDLE

    def _transition(self, state: RelayState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Relay already finished in state {self.state.value}")
        logger.debug("Relay %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(
        self, body: bytes, is_disconnected: Optional[DisconnectCheck] = None
    ) -> RelayOutcome:
        self._transition(RelayState.VALIDATING)
        try:
            request = parse_prompt(body)
            self._transition(RelayState.AWAITING_UPSTREAM)
            result = await self._client.generate(
                request.prompt, is_disconnected=self._watch(is_disconnected)
            )
        except RelayError as exc:
            return self._fail(exc.kind, exc.message, exc)
        except Exception as exc:
            return self._fail(ErrorKind.INTERNAL_ERROR, str(exc), exc)

        if self.state is RelayState.AWAITING_UPSTREAM:
            # Empty body: the stream closed before a single chunk was read.
            self._transition(RelayState.STREAMING)
        self._transition(RelayState.COMPLETED)
        return RelayOutcome.success(result.text)

    def _watch(self, is_disconnected: Optional[DisconnectCheck]) -> DisconnectCheck:
        """Wrap the disconnect probe so the first chunk marks the stream as open."""

        async def check() -> bool:
            if self.state is RelayState.AWAITING_UPSTREAM:
                self._transition(RelayState.STREAMING)
            if is_disconnected is None:
                return False
            return await is_disconnected()

        return check

    def _fail(self, kind: ErrorKind, message: str, exc: Exception) -> RelayOutcome:
        self._transition(RelayState.FAILED)
        outcome = RelayOutcome.failure(kind, message)
        if kind is ErrorKind.CANCELLED:
            logger.info("Relay cancelled: %s", outcome.body["error"])
        else:
            logger.error(
                "Relay failed (%s): %s", kind.value, outcome.body["error"], exc_info=exc
            )
        return outcome


__all__ = [
    "PROMPT_REQUIRED_MESSAGE",
    "INVALID_JSON_MESSAGE",
    "METHOD_NOT_ALLOWED_MESSAGE",
    "STATUS_BY_KIND",
    "RelayState",
    "RelayOutcome",
    "PromptRelay",
    "method_not_allowed",
    "parse_prompt",
]
