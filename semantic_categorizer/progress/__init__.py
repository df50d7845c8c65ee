"""
Progress module for the semantic categorizer.

This module provides the event schemas, the fire-and-forget progress
reporter, the result channel and the sinks both write to.
"""

from .events import (
    CompleteEvent,
    ErrorEvent,
    InfoEvent,
    JobEvent,
    ProgressEvent,
    ResultEvent,
    event_to_record,
)
from .reporter import ProgressReporter, ResultSink
from .sinks import (
    CallbackSink,
    CollectingSink,
    EventSink,
    JsonLinesSink,
    NullSink,
    QueueSink,
)

__all__ = [
    # Events
    "ProgressEvent",
    "InfoEvent",
    "ErrorEvent",
    "CompleteEvent",
    "ResultEvent",
    "JobEvent",
    "event_to_record",
    # Reporting
    "ProgressReporter",
    "ResultSink",
    # Sinks
    "EventSink",
    "JsonLinesSink",
    "CallbackSink",
    "CollectingSink",
    "QueueSink",
    "NullSink",
]
