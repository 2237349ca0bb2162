"""
Exception taxonomy for the MongoDB stream connector.
"""


class CDCError(Exception):
    """Base exception for CDC errors."""
    pass


class ConnectError(CDCError):
    """Connection, authentication or cursor setup failed during connect."""
    pass


class SourceIterationError(CDCError):
    """Cursor or change stream failed while iterating."""
    pass


class DecodeError(SourceIterationError):
    """Raw record could not be interpreted as a document."""
    pass


class ConnectorStateError(CDCError):
    """Operation not allowed in the connector's current state."""
    pass


class ReadError(CDCError):
    """Base class for signals returned from read()."""
    pass


class EndOfInput(ReadError):
    """No more input will be produced (connector closed or source exhausted)."""
    pass


class ReadTimeoutError(ReadError):
    """No event became available within the read timeout."""
    pass
