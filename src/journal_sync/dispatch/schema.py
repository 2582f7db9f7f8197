"""
Second-phase decoding of event fields into handler schemas.

A schema is a dataclass. Each field is read from the event mapping under
its own name, or under ``metadata["key"]`` when the journal uses a
different spelling:

    @dataclass
    class FSDJump:
        star_system: str = field(metadata={"key": "StarSystem"})
        jump_dist: float = field(default=0.0, metadata={"key": "JumpDist"})
"""

import dataclasses
import types
import typing
from typing import Any, Dict, Type

from ..core.exceptions import HandlerError


_SIMPLE_TYPES = (str, int, float, bool)

# typing.Optional[X] and X | None
_UNION_TYPES = tuple(t for t in (typing.Union, getattr(types, "UnionType", None)) if t is not None)


def decode_fields(schema: Type, fields: Dict[str, Any], event_type: str = None) -> Any:
    """
    Build a schema instance from decoded event fields.

    Fields missing from the mapping fall back to their dataclass default.
    Values for ``str``, ``int``, ``float`` and ``bool`` fields (optionally
    wrapped in Optional) are type-checked; other annotations are passed
    through unchecked. Keys the schema does not name are ignored.

    Raises:
        HandlerError: If a required field is missing or has the wrong type
    """
    if not dataclasses.is_dataclass(schema):
        raise HandlerError(f"Schema {schema!r} is not a dataclass", event_type=event_type)

    hints = typing.get_type_hints(schema)
    kwargs = {}

    for f in dataclasses.fields(schema):
        if not f.init:
            continue
        key = f.metadata.get("key", f.name)

        if key not in fields:
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise HandlerError(
                    f"{schema.__name__}: missing required field '{key}'",
                    event_type=event_type,
                )
            continue

        value = fields[key]
        _check_type(schema.__name__, key, value, hints.get(f.name), event_type)
        kwargs[f.name] = value

    return schema(**kwargs)


def _check_type(schema_name: str, key: str, value: Any, annotation: Any, event_type: str) -> None:
    expected = annotation
    optional = False

    if typing.get_origin(annotation) in _UNION_TYPES:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        optional = len(args) < len(typing.get_args(annotation))
        if len(args) != 1:
            return
        expected = args[0]

    if expected not in _SIMPLE_TYPES:
        return
    if value is None:
        if optional:
            return
        raise HandlerError(f"{schema_name}: field '{key}' must not be null", event_type=event_type)

    if expected is bool:
        ok = isinstance(value, bool)
    elif expected is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif expected is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    else:
        ok = isinstance(value, expected)

    if not ok:
        raise HandlerError(
            f"{schema_name}: field '{key}' expected {expected.__name__}, "
            f"got {type(value).__name__}",
            event_type=event_type,
        )
