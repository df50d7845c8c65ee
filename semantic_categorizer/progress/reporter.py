"""
Progress and result emission.

Progress, info, error and completion records go through ProgressReporter,
which never lets a failing consumer interrupt the job: a record that cannot
be delivered is logged and dropped. Results travel separately through
ResultSink, where a delivery failure does propagate.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel

from ..exceptions import SemanticCategorizerError
from ..models import AssignmentResult
from .events import (
    CompleteEvent,
    ErrorEvent,
    InfoEvent,
    ProgressEvent,
    ResultEvent,
    event_to_record,
)
from .sinks import EventSink, NullSink

logger = logging.getLogger(__name__)


class ProgressReporter:
    """
    Fire-and-forget emitter of job events.

    Progress updates from the fetcher, matcher and trainer (any object with
    ``total`` and ``percent`` plus one of ``fetched``, ``processed`` or
    ``epoch``) can be passed straight to ``progress``.
    """

    def __init__(self, sink: Optional[EventSink] = None) -> None:
        self.sink = sink if sink is not None else NullSink()
        self.emitted = 0
        self.dropped = 0

    def emit(self, event: BaseModel) -> bool:
        """Deliver one event. Returns False if it was dropped."""
        try:
            self.sink.write(event_to_record(event))
        except Exception as e:
            self.dropped += 1
            logger.warning(
                f"Dropping {getattr(event, 'type', 'unknown')} event, sink failed: {e}"
            )
            return False
        self.emitted += 1
        return True

    def progress(self, update: Any, stage: Optional[str] = None) -> bool:
        """Emit a progress event built from a progress dataclass."""
        event = ProgressEvent(
            stage=stage or getattr(update, "stage", None) or "unknown",
            total=update.total,
            percent=max(0, min(100, update.percent)),
            fetched=getattr(update, "fetched", None),
            processed=getattr(update, "processed", None),
            epoch=getattr(update, "epoch", None),
        )
        return self.emit(event)

    def info(
        self, message: str, stage: Optional[str] = None, **data: Any
    ) -> bool:
        return self.emit(InfoEvent(message=message, stage=stage, data=data or None))

    def error(
        self,
        error: Exception,
        stage: Optional[str] = None,
        code: Optional[str] = None,
    ) -> bool:
        """Emit the failure record; the code defaults to the error's own."""
        if code is None:
            code = (
                error.code
                if isinstance(error, SemanticCategorizerError)
                else "internal_error"
            )
        return self.emit(ErrorEvent(message=str(error), code=code, stage=stage))

    def complete(self, stage: Optional[str] = None, **summary: Any) -> bool:
        return self.emit(CompleteEvent(stage=stage, summary=summary))


class ResultSink:
    """Result channel: writes one ``result`` record per assignment."""

    def __init__(self, sink: Optional[EventSink] = None) -> None:
        self.sink = sink if sink is not None else NullSink()
        self.written = 0

    def write(self, result: AssignmentResult) -> Dict[str, Any]:
        record = event_to_record(ResultEvent.from_assignment(result))
        self.sink.write(record)
        self.written += 1
        return record
