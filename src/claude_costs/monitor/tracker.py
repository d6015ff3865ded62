"""In-memory state for live sessions.

SessionStateTracker is the only owner of Session objects. It is not
thread-safe on its own: the watcher calls it from a single dispatcher
thread.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from claude_costs.accumulator import burn_rate_sample, minutes_between
from claude_costs.models import BurnRateSample, Event, EventKind, UsageTokens

RECENT_ACTIVITY_LIMIT = 100
BURN_RATE_HISTORY_LIMIT = 20
SNAPSHOT_ACTIVITY = 10


@dataclass
class Session:
    session_id: str
    start_time: datetime
    last_update: datetime
    burn_rate_history: deque[BurnRateSample]
    recent_activity: deque[Event]
    total_cost: float = 0.0
    total_tokens: UsageTokens = field(default_factory=UsageTokens)
    message_count: int = 0
    last_cost_timestamp: datetime | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a Session handed to consumers."""

    session_id: str
    start_time: datetime
    last_update: datetime
    duration: float  # minutes
    total_cost: float
    total_tokens: UsageTokens
    message_count: int
    average_burn_rate: float
    cost_per_minute: float
    tokens_per_minute: float
    recent_activity: tuple[Event, ...]
    burn_rate_history: tuple[BurnRateSample, ...]


@dataclass(frozen=True)
class SessionUpdate:
    session_id: str
    snapshot: SessionSnapshot
    latest_event: Event


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionStateTracker:
    def __init__(
        self,
        recent_activity_limit: int = RECENT_ACTIVITY_LIMIT,
        burn_rate_history_limit: int = BURN_RATE_HISTORY_LIMIT,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._recent_activity_limit = recent_activity_limit
        self._burn_rate_history_limit = burn_rate_history_limit
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._active_session_id: str | None = None

    @property
    def active_session_id(self) -> str | None:
        """Id of the most recently updated session, None before any update."""
        return self._active_session_id

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def apply(self, session_id: str, events: Iterable[Event]) -> SessionUpdate | None:
        """Fold new events into a session, creating it on first sight.

        Returns None when ``events`` is empty.
        """
        events = list(events)
        if not events:
            return None

        session = self._sessions.get(session_id)
        if session is None:
            started = next((e.timestamp for e in events if e.timestamp), None) or self._clock()
            session = Session(
                session_id=session_id,
                start_time=started,
                last_update=started,
                burn_rate_history=deque(maxlen=self._burn_rate_history_limit),
                recent_activity=deque(maxlen=self._recent_activity_limit),
            )
            self._sessions[session_id] = session

        for event in events:
            self._apply_event(session, event)

        self._active_session_id = session_id
        return SessionUpdate(
            session_id=session_id,
            snapshot=self._snapshot(session),
            latest_event=events[-1],
        )

    def _apply_event(self, session: Session, event: Event) -> None:
        if event.kind is EventKind.ASSISTANT and event.cost_bearing:
            session.total_cost += event.cost
            session.total_tokens = session.total_tokens + event.usage
            session.message_count += 1

            sample = burn_rate_sample(session.last_cost_timestamp, event)
            if sample is not None:
                session.burn_rate_history.append(sample)
            if event.timestamp is not None:
                session.last_cost_timestamp = event.timestamp

        session.recent_activity.append(event)
        if event.timestamp is not None and event.timestamp > session.last_update:
            session.last_update = event.timestamp

    def snapshot(self, session_id: str) -> SessionSnapshot | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return self._snapshot(session)

    def active_snapshot(self) -> SessionSnapshot | None:
        if self._active_session_id is None:
            return None
        return self.snapshot(self._active_session_id)

    def all_snapshots(self) -> list[SessionSnapshot]:
        """Every session, most recently updated first."""
        snapshots = [self._snapshot(s) for s in self._sessions.values()]
        return sorted(snapshots, key=lambda s: s.last_update, reverse=True)

    def clear(self) -> None:
        self._sessions.clear()
        self._active_session_id = None

    def _snapshot(self, session: Session) -> SessionSnapshot:
        duration = max(minutes_between(session.start_time, session.last_update), 0.0)
        history = tuple(session.burn_rate_history)
        activity = tuple(session.recent_activity)
        return SessionSnapshot(
            session_id=session.session_id,
            start_time=session.start_time,
            last_update=session.last_update,
            duration=duration,
            total_cost=session.total_cost,
            total_tokens=session.total_tokens,
            message_count=session.message_count,
            average_burn_rate=sum(s.rate for s in history) / len(history) if history else 0.0,
            cost_per_minute=session.total_cost / duration if duration > 0 else 0.0,
            tokens_per_minute=session.total_tokens.total / duration if duration > 0 else 0.0,
            recent_activity=activity[-SNAPSHOT_ACTIVITY:],
            burn_rate_history=history,
        )
