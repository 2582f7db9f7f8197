"""
Custom exceptions for the journal ingestion pipeline.
"""


class JournalSyncError(Exception):
    """Base exception for all journal sync errors."""
    pass


class FileAccessError(JournalSyncError):
    """
    Error locating, opening or reading journal files.

    Raised when:
    - The journal directory does not exist
    - Permission to list or read files is denied
    - The file name pattern is invalid
    - A read from an open journal fails

    Transient: the owning loop logs it and retries on its next poll.
    """

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class SinkConnectionError(JournalSyncError):
    """
    Error reading from or writing to the event sink.

    Raised when:
    - The store is unreachable
    - A statement fails and its transaction is rolled back

    Progress is never advanced past a failed write, so the same line or
    file is retried the next time the owning loop runs.
    """

    def __init__(self, message: str, operation: str = None):
        super().__init__(message)
        self.operation = operation


class MalformedRecordError(JournalSyncError):
    """
    A journal line could not be decoded into an event.

    Raised when:
    - The line is not valid JSON
    - The JSON value is not an object
    - The 'event' or 'timestamp' field is missing or invalid
    """

    def __init__(self, message: str, line: str = None):
        super().__init__(message)
        self.line = line


class HandlerError(JournalSyncError):
    """
    A per-type handler failed to write its record.

    Logged and isolated by the dispatcher: it never blocks sibling
    handlers or later lines.
    """

    def __init__(self, message: str, event_type: str = None, handler: str = None):
        super().__init__(message)
        self.event_type = event_type
        self.handler = handler


class ConfigError(JournalSyncError):
    """
    Error in journal sync configuration.

    Raised when:
    - The configuration file cannot be parsed
    - A configuration value is out of its valid range
    """
    pass
