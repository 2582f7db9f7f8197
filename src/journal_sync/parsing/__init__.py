"""
Journal line parsing.
"""

from .parser import EventParser, parse_line, parse_timestamp

__all__ = ["EventParser", "parse_line", "parse_timestamp"]
