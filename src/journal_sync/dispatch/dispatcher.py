"""
Event dispatcher - stores envelopes and routes events to type handlers.
"""

import logging
from datetime import datetime
from typing import Optional

from ..core.exceptions import HandlerError
from ..core.models import DispatchResult, ParsedEvent
from ..core.sink import EventSink
from .registry import HandlerContext, HandlerDefinition, HandlerRegistry, get_handler_registry
from .schema import decode_fields


logger = logging.getLogger(__name__)


class EventDispatcher:
    """
    Materialises one envelope per journal line and runs its type handlers.

    Handlers run every time a line is imported, including when the
    envelope already existed (a resumed or reprocessed line), so they
    must write their sub-records idempotently, keyed by envelope id.

    A failing handler is logged with the envelope id and skipped; the
    remaining handlers still run and the envelope is still marked parsed.
    Sink errors from the envelope writes themselves propagate.
    """

    def __init__(self, sink: EventSink, registry: Optional[HandlerRegistry] = None):
        self.sink = sink
        self.registry = registry if registry is not None else get_handler_registry()

    def ensure_envelope(
        self,
        filename: str,
        line_number: int,
        timestamp: datetime,
        event_type: str,
        raw_payload: str,
    ) -> int:
        """
        Create the envelope for a line if absent.

        An existing envelope is returned unchanged.

        Returns:
            Identifier of the new or existing envelope
        """
        return self.sink.create_envelope_if_absent(
            filename, line_number, timestamp, event_type, raw_payload
        )

    def dispatch(self, envelope_id: int, event: ParsedEvent) -> DispatchResult:
        """
        Run every handler registered for the event's type.

        Never raises for handler failures.
        """
        result = DispatchResult(envelope_id=envelope_id, event_type=event.event_type)
        definitions = self.registry.get(event.event_type)

        if not definitions:
            logger.debug(f"No handler for event type {event.event_type} (envelope {envelope_id})")
            return result

        for definition in definitions:
            result.handlers_run += 1
            if not self._run_handler(definition, envelope_id, event):
                result.handlers_failed += 1

        return result

    def _run_handler(self, definition: HandlerDefinition, envelope_id: int, event: ParsedEvent) -> bool:
        context = {"event_id": envelope_id}
        try:
            record = None
            if definition.schema is not None:
                record = decode_fields(definition.schema, event.fields, event_type=event.event_type)
            definition.func(HandlerContext(
                envelope_id=envelope_id,
                event=event,
                sink=self.sink,
                record=record,
            ))
            return True
        except HandlerError as e:
            logger.error(
                f"Handler {definition.event_type}/{definition.name} failed: {e}",
                extra=context,
            )
        except Exception as e:
            logger.exception(
                f"Handler {definition.event_type}/{definition.name} raised "
                f"{type(e).__name__}: {e}",
                extra=context,
            )
        return False

    def mark_parsed(self, envelope_id: int) -> None:
        self.sink.mark_parsed(envelope_id)

    def import_event(self, filename: str, line_number: int, event: ParsedEvent) -> int:
        """
        Store and dispatch one parsed line.

        Returns:
            The envelope id

        Raises:
            SinkConnectionError: If the envelope cannot be stored or flagged
        """
        envelope_id = self.ensure_envelope(
            filename, line_number, event.timestamp, event.event_type, event.raw
        )
        result = self.dispatch(envelope_id, event)
        self.mark_parsed(envelope_id)

        if result.handlers_failed:
            logger.debug(
                f"{result.handlers_failed}/{result.handlers_run} handlers failed "
                f"for {event.event_type} (envelope {envelope_id})"
            )
        return envelope_id
