import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import Optional

from prompt_relay.schemas import GenerateChunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregateResult:
    text: str
    done: bool
    records: int
    skipped: int


class StreamAggregator:
    """Folds generate records into one response text.

    Fragments are concatenated verbatim in arrival order. Once a record with
    ``done`` set has been seen the accumulated text is final; anything the
    upstream sends afterwards is read but ignored.
    """

    def __init__(self) -> None:
        self._parts: list[str] = []
        self._done = False
        self._records = 0
        self._skipped = 0
        self._finalized = False

    @property
    def done(self) -> bool:
        return self._done

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def add(self, record: GenerateChunk) -> None:
        if self._finalized:
            raise RuntimeError("Aggregate result already finalized")

        self._records += 1
        if record.error:
            logger.warning("Upstream reported an error in stream: %s", record.error)

        if self._done:
            if record.response:
                logger.debug("Ignoring fragment received after done: %r", record.response)
            return

        if record.response:
            self._parts.append(record.response)
        if record.done:
            self._done = True

    def skip(self) -> None:
        self._skipped += 1

    def result(self) -> AggregateResult:
        if self._finalized:
            raise RuntimeError("Aggregate result already finalized")
        self._finalized = True
        return AggregateResult(
            text=self.text,
            done=self._done,
            records=self._records,
            skipped=self._skipped,
        )


async def aggregate(records: AsyncIterable[Optional[GenerateChunk]]) -> AggregateResult:
    """Drain ``records`` to the end of the stream and return the folded result."""
    aggregator = StreamAggregator()
    async for record in records:
        if record is None:
            aggregator.skip()
        else:
            aggregator.add(record)
    return aggregator.result()


__all__ = ["AggregateResult", "StreamAggregator", "aggregate"]
