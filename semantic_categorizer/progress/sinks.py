"""
Destinations for emitted records.
"""

import asyncio
import json
import sys
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TextIO


class EventSink(ABC):
    """Receives wire records (plain dicts)."""

    @abstractmethod
    def write(self, record: Dict[str, Any]) -> None:
        raise NotImplementedError


class JsonLinesSink(EventSink):
    """Writes one JSON object per line and flushes after each record."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def write(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, default=str)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()


class CallbackSink(EventSink):
    """Hands every record to a callable."""

    def __init__(self, callback: Callable[[Dict[str, Any]], Any]) -> None:
        self.callback = callback

    def write(self, record: Dict[str, Any]) -> None:
        self.callback(record)


class QueueSink(EventSink):
    """
    Puts records on an ``asyncio.Queue`` without waiting.

    A full queue raises ``asyncio.QueueFull``; the reporter drops the record.
    """

    def __init__(self, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
        self.queue = queue

    def write(self, record: Dict[str, Any]) -> None:
        self.queue.put_nowait(record)


class CollectingSink(EventSink):
    """Keeps records in memory."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def write(self, record: Dict[str, Any]) -> None:
        self.records.append(record)

    def of_type(self, record_type: str) -> List[Dict[str, Any]]:
        return [r for r in self.records if r.get("type") == record_type]


class NullSink(EventSink):
    """Discards records."""

    def write(self, record: Dict[str, Any]) -> None:
        pass
