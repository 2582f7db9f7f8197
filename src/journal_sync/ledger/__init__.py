"""
Progress ledger for journal files.
"""

from .progress_ledger import ProgressLedger

__all__ = ["ProgressLedger"]
