"""Cross-conversation aggregation.

All functions are pure: they take a collection of Conversation values and
return structured dataclasses. Inputs are put in a canonical order before
any summing, so totals do not depend on file discovery order; only ties in
ranked listings can differ.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable

from claude_costs.accumulator import minutes_between
from claude_costs.models import BurnRateSample, Conversation, UsageTokens

# Idle gaps at or below this many minutes are not worth reporting
IDLE_GAP_THRESHOLD_MINUTES = 5
IDLE_GAP_TOP_N = 10
HIGH_BURN_TOP_N = 20

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class TotalStats:
    total_cost: float
    total_tokens: int
    total_messages: int
    total_duration: float  # minutes
    conversation_count: int
    average_cost: float
    average_tokens: float
    average_duration: float


@dataclass
class DailyBucket:
    date: date
    total_cost: float = 0.0
    total_tokens: int = 0
    conversation_count: int = 0
    conversation_ids: list[str] = field(default_factory=list)


@dataclass
class HourlyBucket:
    hour: int
    total_cost: float = 0.0
    total_tokens: int = 0
    conversation_count: int = 0


@dataclass
class ToolUsage:
    name: str
    total_count: int = 0
    total_cost: float = 0.0
    total_errors: int = 0
    conversations: int = 0


@dataclass
class ModelUsage:
    model: str
    total_count: int = 0
    total_cost: float = 0.0
    total_tokens: UsageTokens = field(default_factory=UsageTokens)
    conversations: int = 0


@dataclass
class CommandUsage:
    command: str
    count: int
    conversation_count: int


@dataclass
class ErrorStats:
    total_errors: int
    conversations_with_errors: int
    error_rate: float  # fraction of conversations with at least one error
    errors_by_tool: dict[str, int]


@dataclass
class IdleGap:
    conversation_id: str
    title: str
    average_gap: float  # minutes
    max_gap: float  # minutes
    idle_percentage: float


@dataclass
class SessionStats:
    average_duration: float
    longest_session: Conversation | None
    shortest_session: Conversation | None
    total_sessions: int
    idle_time_analysis: list[IdleGap]


@dataclass
class TaggedBurnSample:
    sample: BurnRateSample
    conversation_id: str
    conversation_title: str

    @property
    def rate(self) -> float:
        return self.sample.rate


@dataclass
class TokenBurnStats:
    average_burn_rate: float
    max_burn_rate: float
    high_burn_moments: list[TaggedBurnSample]


@dataclass
class UsageBreakdown:
    count: int = 0
    cost: float = 0.0


@dataclass
class ProjectStats:
    name: str
    total_cost: float = 0.0
    total_tokens: int = 0
    conversation_count: int = 0
    total_duration: float = 0.0
    tool_usage: dict[str, UsageBreakdown] = field(default_factory=dict)
    models: dict[str, UsageBreakdown] = field(default_factory=dict)


@dataclass
class AnalysisReport:
    """Every view the rendering layer consumes, computed in one pass."""

    conversations: list[Conversation]  # cost > 0, most expensive first
    totals: TotalStats
    daily: list[DailyBucket]
    hourly: list[HourlyBucket]
    tools: list[ToolUsage]
    models: list[ModelUsage]
    commands: list[CommandUsage]
    errors: ErrorStats
    sessions: SessionStats
    token_burn: TokenBurnStats
    projects: list[ProjectStats]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _canonical(conversations: Iterable[Conversation]) -> list[Conversation]:
    return sorted(conversations, key=lambda c: (c.project_name, c.conversation_id))


def _local(ts: datetime, tz: tzinfo | None) -> datetime:
    """Convert to ``tz`` (the local zone when None)."""
    return ts.astimezone(tz)


# ---------------------------------------------------------------------------
# Reductions
# ---------------------------------------------------------------------------


def conversations_with_costs(conversations: Iterable[Conversation]) -> list[Conversation]:
    """Conversations that cost anything, most expensive first."""
    costed = [c for c in _canonical(conversations) if c.total_cost > 0]
    return sorted(costed, key=lambda c: -c.total_cost)


def total_stats(conversations: Iterable[Conversation]) -> TotalStats:
    costed = [c for c in _canonical(conversations) if c.total_cost > 0]
    count = len(costed)
    total_cost = sum(c.total_cost for c in costed)
    total_tokens = sum(c.total_tokens.total for c in costed)
    total_duration = sum(c.duration for c in costed)
    return TotalStats(
        total_cost=total_cost,
        total_tokens=total_tokens,
        total_messages=sum(c.message_count for c in costed),
        total_duration=total_duration,
        conversation_count=count,
        average_cost=total_cost / count if count else 0.0,
        average_tokens=total_tokens / count if count else 0.0,
        average_duration=total_duration / count if count else 0.0,
    )


def daily_costs(
    conversations: Iterable[Conversation], tz: tzinfo | None = None,
) -> list[DailyBucket]:
    """Cost per calendar day of each conversation's start time, oldest first."""
    buckets: dict[date, DailyBucket] = {}
    for conv in _canonical(conversations):
        if conv.total_cost <= 0 or conv.start_time is None:
            continue
        day = _local(conv.start_time, tz).date()
        bucket = buckets.setdefault(day, DailyBucket(date=day))
        bucket.total_cost += conv.total_cost
        bucket.total_tokens += conv.total_tokens.total
        bucket.conversation_count += 1
        bucket.conversation_ids.append(conv.conversation_id)
    return [buckets[day] for day in sorted(buckets)]


def daily_cost_on(
    conversations: Iterable[Conversation], day: date, tz: tzinfo | None = None,
) -> float:
    """Total cost of conversations that started on ``day``."""
    return sum(
        bucket.total_cost for bucket in daily_costs(conversations, tz) if bucket.date == day
    )


def hourly_costs(
    conversations: Iterable[Conversation], tz: tzinfo | None = None,
) -> list[HourlyBucket]:
    """Cost per hour of day; always 24 buckets, hour 0 first."""
    buckets = [HourlyBucket(hour=hour) for hour in range(24)]
    for conv in _canonical(conversations):
        if conv.total_cost <= 0 or conv.start_time is None:
            continue
        bucket = buckets[_local(conv.start_time, tz).hour]
        bucket.total_cost += conv.total_cost
        bucket.total_tokens += conv.total_tokens.total
        bucket.conversation_count += 1
    return buckets


def tool_usage(conversations: Iterable[Conversation]) -> list[ToolUsage]:
    tools: dict[str, ToolUsage] = {}
    for conv in _canonical(conversations):
        for name, record in conv.tool_usage.items():
            usage = tools.setdefault(name, ToolUsage(name=name))
            usage.total_count += record.count
            usage.total_cost += record.total_cost
            usage.total_errors += record.error_count
            usage.conversations += 1
    return sorted(tools.values(), key=lambda t: (-t.total_count, t.name))


def model_usage(conversations: Iterable[Conversation]) -> list[ModelUsage]:
    models: dict[str, ModelUsage] = {}
    for conv in _canonical(conversations):
        for name, record in conv.models.items():
            usage = models.setdefault(name, ModelUsage(model=name))
            usage.total_count += record.count
            usage.total_cost += record.cost
            usage.total_tokens = usage.total_tokens + record.tokens
            usage.conversations += 1
    return sorted(models.values(), key=lambda m: (-m.total_cost, m.model))


def command_usage(conversations: Iterable[Conversation]) -> list[CommandUsage]:
    counts: dict[str, int] = defaultdict(int)
    seen_in: dict[str, set[str]] = defaultdict(set)
    for conv in _canonical(conversations):
        for invocation in conv.commands:
            counts[invocation.command] += 1
            seen_in[invocation.command].add(conv.conversation_id)
    usage = [
        CommandUsage(command=cmd, count=n, conversation_count=len(seen_in[cmd]))
        for cmd, n in counts.items()
    ]
    return sorted(usage, key=lambda c: (-c.count, c.command))


def error_stats(conversations: Iterable[Conversation]) -> ErrorStats:
    convs = _canonical(conversations)
    with_errors = sum(1 for c in convs if c.errors)
    errors_by_tool: dict[str, int] = defaultdict(int)
    for conv in convs:
        for name, record in conv.tool_usage.items():
            if record.error_count > 0:
                errors_by_tool[name] += record.error_count
    return ErrorStats(
        total_errors=sum(len(c.errors) for c in convs),
        conversations_with_errors=with_errors,
        error_rate=with_errors / len(convs) if convs else 0.0,
        errors_by_tool=dict(sorted(errors_by_tool.items())),
    )


def _idle_gap(conv: Conversation) -> IdleGap:
    stamps = conv.message_timestamps
    gaps = [
        gap
        for gap in (minutes_between(a, b) for a, b in zip(stamps, stamps[1:]))
        if gap > 0
    ]
    max_gap = max(gaps) if gaps else 0.0
    return IdleGap(
        conversation_id=conv.conversation_id,
        title=conv.title,
        average_gap=sum(gaps) / len(gaps) if gaps else 0.0,
        max_gap=max_gap,
        idle_percentage=max_gap / conv.duration * 100 if conv.duration > 0 else 0.0,
    )


def session_stats(conversations: Iterable[Conversation]) -> SessionStats:
    """Duration stats over conversations that lasted, plus idle-gap ranking."""
    sessions = [c for c in _canonical(conversations) if c.duration > 0]
    if not sessions:
        return SessionStats(
            average_duration=0.0,
            longest_session=None,
            shortest_session=None,
            total_sessions=0,
            idle_time_analysis=[],
        )

    by_duration = sorted(sessions, key=lambda c: -c.duration)
    idle = [
        gap for gap in (_idle_gap(c) for c in sessions)
        if gap.max_gap > IDLE_GAP_THRESHOLD_MINUTES
    ]
    idle.sort(key=lambda g: -g.max_gap)

    return SessionStats(
        average_duration=sum(c.duration for c in sessions) / len(sessions),
        longest_session=by_duration[0],
        shortest_session=by_duration[-1],
        total_sessions=len(sessions),
        idle_time_analysis=idle[:IDLE_GAP_TOP_N],
    )


def token_burn_stats(conversations: Iterable[Conversation]) -> TokenBurnStats:
    samples = [
        TaggedBurnSample(
            sample=sample,
            conversation_id=conv.conversation_id,
            conversation_title=conv.title,
        )
        for conv in _canonical(conversations)
        for sample in conv.burn_rate
    ]
    if not samples:
        return TokenBurnStats(average_burn_rate=0.0, max_burn_rate=0.0, high_burn_moments=[])

    ranked = sorted(samples, key=lambda s: -s.rate)
    return TokenBurnStats(
        average_burn_rate=sum(s.rate for s in samples) / len(samples),
        max_burn_rate=ranked[0].rate,
        high_burn_moments=ranked[:HIGH_BURN_TOP_N],
    )


def project_stats(conversations: Iterable[Conversation]) -> list[ProjectStats]:
    projects: dict[str, ProjectStats] = {}
    for conv in _canonical(conversations):
        project = projects.setdefault(conv.project_name, ProjectStats(name=conv.project_name))
        project.total_cost += conv.total_cost
        project.total_tokens += conv.total_tokens.total
        project.conversation_count += 1
        project.total_duration += conv.duration

        for name, record in conv.tool_usage.items():
            tool = project.tool_usage.setdefault(name, UsageBreakdown())
            tool.count += record.count
            tool.cost += record.total_cost

        for name, record in conv.models.items():
            model = project.models.setdefault(name, UsageBreakdown())
            model.count += record.count
            model.cost += record.cost

    return sorted(projects.values(), key=lambda p: (-p.total_cost, p.name))


def filter_conversations(
    conversations: Iterable[Conversation],
    project: str | None = None,
    days: int | None = None,
    now: datetime | None = None,
) -> list[Conversation]:
    """Keep conversations whose project name contains ``project`` and that
    started within the last ``days`` days.

    Conversations without a start time are dropped when a day window applies.
    """
    result = list(conversations)
    if project:
        result = [c for c in result if project in c.project_name]
    if days is not None:
        if now is None:
            now = datetime.now().astimezone()
        cutoff = now - timedelta(days=days)
        result = [c for c in result if c.start_time is not None and c.start_time >= cutoff]
    return result


def build_report(
    conversations: Iterable[Conversation], tz: tzinfo | None = None,
) -> AnalysisReport:
    convs = _canonical(conversations)
    return AnalysisReport(
        conversations=conversations_with_costs(convs),
        totals=total_stats(convs),
        daily=daily_costs(convs, tz),
        hourly=hourly_costs(convs, tz),
        tools=tool_usage(convs),
        models=model_usage(convs),
        commands=command_usage(convs),
        errors=error_stats(convs),
        sessions=session_stats(convs),
        token_burn=token_burn_stats(convs),
        projects=project_stats(convs),
    )
