"""State-change notifications emitted by the task queue manager.

Listeners are plain callables; a push layer (websocket, webhook) subscribes
here instead of polling. A failing listener is logged and skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class TaskEventType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_STARTED = "task_started"
    JOB_FINISHED = "job_finished"
    TASK_FINISHED = "task_finished"
    TASK_CANCELLED = "task_cancelled"
    TASK_RETRIED = "task_retried"


@dataclass
class TaskEvent:
    type: TaskEventType
    task_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=datetime.utcnow)


Listener = Callable[[TaskEvent], None]


class EventBus:
    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: TaskEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener failed for %s on task %s", event.type.value, event.task_id
                )
