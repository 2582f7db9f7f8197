"""
Configuration loading for the journal sync pipeline.
"""

from .config_loader import JournalSyncConfig

__all__ = ["JournalSyncConfig"]
