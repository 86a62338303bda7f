"""
Change signals emitted by the progression engine.

The engine never talks to a transport directly. Each mutating operation
receives a NotificationContext (or builds a fresh one), records the
signals it produced, and hands them to whatever subscribers the caller
registered. Nothing here is process-global: a context lives for one
request/operation and ``reset()`` clears it between tests.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class ChangeSignal(str, Enum):
    POOLS_CHANGED = "pools_changed"
    MATCHES_GENERATED = "matches_generated"
    SCHEDULE_PLAN_CHANGED = "schedule_plan_changed"
    MATCH_STATUS_CHANGED = "match_status_changed"
    MATCH_FINALIZED = "match_finalized"
    MATCH_UNFINALIZED = "match_unfinalized"
    BRACKET_UPDATED = "bracket_updated"


@dataclass
class Notification:
    signal: ChangeSignal
    tournament_id: int
    payload: Dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[Notification], None]


class NotificationContext:
    """Per-operation signal sink plus scoreboard -> match routing lookup."""

    def __init__(self, subscribers: Optional[List[Subscriber]] = None):
        self._subscribers: List[Subscriber] = list(subscribers or [])
        self.emitted: List[Notification] = []
        self._scoreboard_to_match: Dict[int, int] = {}

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.append(subscriber)

    def emit(self, signal: ChangeSignal, tournament_id: int, **payload: Any) -> Notification:
        note = Notification(signal=signal, tournament_id=tournament_id, payload=payload)
        self.emitted.append(note)
        logger.debug("signal %s tournament=%s payload=%s", signal.value, tournament_id, payload)
        for subscriber in self._subscribers:
            subscriber(note)
        return note

    def signals(self) -> List[ChangeSignal]:
        return [n.signal for n in self.emitted]

    def of(self, signal: ChangeSignal) -> List[Notification]:
        return [n for n in self.emitted if n.signal == signal]

    # Scoreboard routing -------------------------------------------------

    def bind_scoreboard(self, scoreboard_id: Optional[int], match_id: Optional[int]) -> None:
        if scoreboard_id is None or match_id is None:
            return
        self._scoreboard_to_match[scoreboard_id] = match_id

    def match_for_scoreboard(self, scoreboard_id: int) -> Optional[int]:
        return self._scoreboard_to_match.get(scoreboard_id)

    def reset(self) -> None:
        self.emitted.clear()
        self._scoreboard_to_match.clear()


def ensure_context(notifier: Optional[NotificationContext]) -> NotificationContext:
    return notifier if notifier is not None else NotificationContext()
