"""
Decodes journal lines into routable events.

Only the two fields needed for routing are validated here: the ``event``
type tag and the ``timestamp``. Everything else is left in the decoded
mapping for the type handlers.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from ..core.exceptions import MalformedRecordError
from ..core.models import ParsedEvent


logger = logging.getLogger(__name__)


TYPE_FIELD = "event"
TIMESTAMP_FIELD = "timestamp"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    A trailing ``Z`` is accepted; a timestamp without an offset is taken
    to be UTC, which is what the producer writes.

    Raises:
        MalformedRecordError: If the value is not an ISO-8601 string
    """
    if not isinstance(value, str) or not value.strip():
        raise MalformedRecordError(f"Invalid timestamp: {value!r}")

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise MalformedRecordError(f"Invalid timestamp: {value!r}") from e

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_line(line: str) -> ParsedEvent:
    """
    Decode one journal line.

    Args:
        line: A journal line without its terminator

    Returns:
        ParsedEvent carrying the type tag, UTC timestamp, full field
        mapping and the raw line

    Raises:
        MalformedRecordError: If the line is blank, not a JSON object, or
            lacks a valid type tag or timestamp
    """
    if line is None or not line.strip():
        raise MalformedRecordError("Blank line", line=line)

    try:
        fields = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"Invalid JSON: {e}", line=line) from e

    if not isinstance(fields, dict):
        raise MalformedRecordError(
            f"Expected a JSON object, got {type(fields).__name__}", line=line
        )

    event_type = fields.get(TYPE_FIELD)
    if not isinstance(event_type, str) or not event_type.strip():
        raise MalformedRecordError(f"Missing or invalid '{TYPE_FIELD}' field", line=line)

    try:
        timestamp = parse_timestamp(fields.get(TIMESTAMP_FIELD))
    except MalformedRecordError as e:
        raise MalformedRecordError(str(e), line=line) from e

    return ParsedEvent(
        event_type=event_type,
        timestamp=timestamp,
        fields=fields,
        raw=line,
    )


class EventParser:
    """
    Stateless parser for journal lines.

    Exists so the line importer can be handed a parser instance; use
    ``parse_line`` directly elsewhere.
    """

    def parse(self, line: str) -> ParsedEvent:
        return parse_line(line)
