"""Event stream intake."""

from altwatch.stream.manager import StreamConnectionManager, StreamTransport
from altwatch.stream.processed import ProcessedSet

__all__ = ["ProcessedSet", "StreamConnectionManager", "StreamTransport"]
