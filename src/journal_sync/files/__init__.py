"""
Journal file discovery and reading.
"""

from .locator import FileLocator, DEFAULT_PATTERN
from .reader import JournalReader

__all__ = ["FileLocator", "JournalReader", "DEFAULT_PATTERN"]
