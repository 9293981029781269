"""
Request completion events and listener dispatch.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from shared.logging import get_logger


OUTCOME_HIT = "hit"
OUTCOME_ABSENT_HIT = "absent_hit"
OUTCOME_OK = "ok"
OUTCOME_NOT_FOUND = "not_found"
OUTCOME_NOT_READY = "not_ready"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class RequestCompleted:
    """Emitted once per view fetch, whatever the outcome."""

    url: str
    cache_key: str
    outcome: str
    status_code: Optional[int]
    attempts: int
    latency_seconds: float
    from_cache: bool
    error_code: Optional[str] = None
    # Matches the fetch_id on this request's log lines
    fetch_id: Optional[str] = None


RequestListener = Callable[[RequestCompleted], None]


class ListenerRegistry:
    """Fans events out to listeners; a failing listener never fails the request."""

    def __init__(self, listeners: Iterable[RequestListener] = ()):
        self._listeners: List[RequestListener] = list(listeners)
        self.logger = get_logger("morph.events")

    def add(self, listener: RequestListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: RequestListener) -> None:
        self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: RequestCompleted) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.error(
                    "Request listener failed",
                    listener=getattr(listener, "__name__", type(listener).__name__),
                    url=event.url,
                    error=str(e)
                )
