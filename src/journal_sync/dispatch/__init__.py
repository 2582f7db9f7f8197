"""
Event routing: handler registry, schema decoding and the dispatcher.
"""

from .registry import (
    HandlerContext, HandlerDefinition, HandlerRegistry, get_handler_registry, load_handler_modules
)
from .schema import decode_fields
from .dispatcher import EventDispatcher

__all__ = [
    "HandlerContext",
    "HandlerDefinition",
    "HandlerRegistry",
    "get_handler_registry",
    "load_handler_modules",
    "decode_fields",
    "EventDispatcher",
]
