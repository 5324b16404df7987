from __future__ import annotations

import itertools
import json
import logging
from typing import Callable, List

from .schema import BaseEvent, EventEnvelope
from ..metrics.ledger import get_events_total, get_listener_errors_total

Subscriber = Callable[[EventEnvelope], None]

log = logging.getLogger("stockledger.events")


class EventBus:
    """In-process change notification for one ledger.

    Subscribers run synchronously in registration order. A subscriber that
    raises is logged and counted; the remaining subscribers still run.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._sequence = itertools.count(1)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._subscribers)

    def emit(self, event: BaseEvent, correlation_id: str = "") -> EventEnvelope:
        env = EventEnvelope(
            correlation_id=correlation_id or (event.symbol or "ledger"),
            sequence=next(self._sequence),
            event=event,
        )
        self.publish(env)
        return env

    def publish(self, env: EventEnvelope) -> None:
        """Log a single-line JSON record and deliver ``env`` to every subscriber."""
        try:
            get_events_total().labels(env.event.event_type).inc()
        except Exception:
            pass

        line = json.dumps({
            "schema_version": env.schema_version,
            "correlation_id": env.correlation_id,
            "sequence": env.sequence,
            "event": env.event.model_dump(),
        }, separators=(",", ":"))
        try:
            log.info(line)
        except Exception:
            pass

        # snapshot: a callback may unsubscribe itself while we iterate
        for callback in list(self._subscribers):
            try:
                callback(env)
            except Exception:
                log.exception("subscriber %r failed on %s", callback, env.event.event_type)
                try:
                    get_listener_errors_total().inc()
                except Exception:
                    pass
