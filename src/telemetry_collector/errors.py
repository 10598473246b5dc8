"""
Telemetry Collector - Exceptions

All errors raised by the collector derive from CollectorError so the CLI
can report a failed cycle without catching unrelated exceptions.
"""


class CollectorError(Exception):
    """Base class for collector errors."""
    pass


class FeedUnavailableError(CollectorError):
    """
    Telemetry feed is down or unreachable.

    Not retried inside the cycle. The scheduler runs the next cycle.
    """
    pass


class FeedProtocolError(CollectorError):
    """
    The feed sent something this client cannot read.

    An undecodable frame is logged and skipped; one bad frame never aborts a
    cycle. An unsupported feed version propagates out of get_nodes().
    """
    pass


class EmptyFeedError(CollectorError):
    """
    The feed returned no nodes for the subscribed chain.

    Fatal for the cycle: no files are written.
    """
    pass


class EmptyRowsError(CollectorError):
    """
    The writer was given no rows, so there is no header to infer.

    Fatal for the cycle: no files are written.
    """
    pass


class FieldCollisionError(CollectorError):
    """Two row field groups declare the same column name."""
    pass
