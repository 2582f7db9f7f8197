"""
journal-sync: resumable ingestion of append-only event journals.

Tails the active journal file in real time, backfills partially imported
historical files, and records per-file progress so an interrupted run
resumes exactly where it stopped.
"""

__version__ = "0.1.0"
