"""
Broadcaster: fan one event stream out to every sink at once.

Each event is handed to all sinks concurrently; publish() returns when
every sink has finished or failed. A failing or timed-out sink is reported
in the BroadcastReport and never interrupts the others or the conversation.
Because publish() is awaited event by event, each sink sees events in
emission order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from chatwire.errors import SinkError
from chatwire.models import ConversationEvent
from chatwire.sinks import EventSink

logger = logging.getLogger(__name__)


@dataclass
class BroadcastReport:
    """Outcome of one publish() call."""
    delivered: int = 0
    failures: list[SinkError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def warning(self) -> str:
        if not self.failures:
            return ""
        return f"{len(self.failures)} sink(s) failed: " + "; ".join(str(f) for f in self.failures)


class Broadcaster:

    def __init__(self, sinks: list[EventSink], sink_timeout: float | None = None):
        self.sinks = list(sinks)
        self.sink_timeout = sink_timeout

    async def _deliver(self, sink: EventSink, event: ConversationEvent):
        try:
            if self.sink_timeout:
                await asyncio.wait_for(sink.send(event), timeout=self.sink_timeout)
            else:
                await sink.send(event)
        except asyncio.TimeoutError as e:
            raise SinkError(sink.name, TimeoutError(f"no answer within {self.sink_timeout}s")) from e
        except Exception as e:
            raise SinkError(sink.name, e) from e

    async def publish(self, event: ConversationEvent) -> BroadcastReport:
        """Deliver one event to every sink. Never raises for sink failures."""
        results = await asyncio.gather(
            *(self._deliver(sink, event) for sink in self.sinks),
            return_exceptions=True,
        )

        report = BroadcastReport()
        for sink, result in zip(self.sinks, results):
            if isinstance(result, SinkError):
                report.failures.append(result)
            elif isinstance(result, BaseException):
                report.failures.append(SinkError(sink.name, result))
            else:
                report.delivered += 1

        if report.failures:
            logger.warning("Broadcast of '%s': %s", event.kind.value, report.warning)
        return report

    async def close(self) -> list[SinkError]:
        """Close every sink, collecting failures."""
        failures: list[SinkError] = []
        for sink in self.sinks:
            try:
                await sink.close()
            except Exception as e:
                logger.warning("Closing sink '%s' failed: %s", sink.name, e)
                failures.append(SinkError(sink.name, e))
        return failures
