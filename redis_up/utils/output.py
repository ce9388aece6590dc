"""Output utilities for writing to stdout with proper flushing."""

import sys


def write_stdout(message: str, flush: bool = True) -> None:
    """Write message to stdout with optional flushing.

    Used for raw container output that must not pass through rich markup.
    """
    sys.stdout.write(message)
    if flush:
        sys.stdout.flush()
