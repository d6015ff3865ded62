"""Conversation accumulator: folds the events of one log file into a Conversation."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from claude_costs.models import (
    BurnRateSample,
    CommandInvocation,
    Conversation,
    Event,
    EventKind,
    ModelUsageRecord,
    ToolError,
    ToolExecution,
    ToolUsageRecord,
    UsageTokens,
)

TITLE_MAX_LENGTH = 100
UNTITLED = "Untitled"


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def burn_rate_sample(
    previous: datetime | None, event: Event,
) -> BurnRateSample | None:
    """Sample between the previous cost-bearing timestamp and ``event``.

    Only a strictly positive delta yields a sample.
    """
    if previous is None or event.timestamp is None:
        return None
    delta = minutes_between(previous, event.timestamp)
    if delta <= 0:
        return None
    return BurnRateSample(
        timestamp=event.timestamp,
        tokens=event.usage.total,
        rate=event.usage.total / delta,
        cost=event.cost,
    )


def attribute_tool_cost(
    tool_usage: dict[str, ToolUsageRecord], parent_id: str | None, cost: float,
) -> str | None:
    """Add ``cost`` to the first tool execution linked to ``parent_id``.

    Tools are searched in first-use order, executions in call order; an
    execution matches on its own id or its parent id. Returns the tool name
    that received the cost, or None when nothing matched (cost stays
    unattributed).
    """
    if not parent_id:
        return None
    for tool_name, record in tool_usage.items():
        for execution in record.executions:
            if execution.id == parent_id or execution.parent_id == parent_id:
                record.total_cost += cost
                return tool_name
    return None


def resolve_title(
    thread_summary: str | None,
    metadata_summary: str | None,
    summary: str | None,
    first_user_message: str | None,
) -> str:
    for candidate in (thread_summary, metadata_summary, summary, first_user_message):
        if candidate:
            title = candidate
            break
    else:
        title = UNTITLED
    return title.replace("\r\n", " ").replace("\n", " ")[:TITLE_MAX_LENGTH]


class ConversationAccumulator:
    """Single-pass fold over the events of one conversation.

    Events are taken in file order; timestamps need not be sorted.
    """

    def __init__(self, conversation_id: str, project_name: str):
        self.conversation_id = conversation_id
        self.project_name = project_name

        self._session_id = ""
        self._summary: str | None = None
        self._thread_summary: str | None = None
        self._metadata_summary: str | None = None
        self._first_user_message: str | None = None
        self._conversation_name = ""
        self._project_path = ""

        self._total_cost = 0.0
        self._total_tokens = UsageTokens()
        self._message_count = 0
        self._start: datetime | None = None
        self._end: datetime | None = None
        self._distinct_timestamps: set[datetime] = set()
        self._last_cost_timestamp: datetime | None = None

        self._tool_usage: dict[str, ToolUsageRecord] = {}
        self._models: dict[str, ModelUsageRecord] = {}
        self._commands: list[CommandInvocation] = []
        self._errors: list[ToolError] = []
        self._burn_rate: list[BurnRateSample] = []
        self._timestamps: list[datetime] = []
        self._working_directories: set[str] = set()

    def add(self, event: Event) -> None:
        if event.session_id and not self._session_id:
            self._session_id = event.session_id
        if event.cwd:
            self._working_directories.add(event.cwd)

        if event.kind is EventKind.SUMMARY:
            self._add_summary(event)
        elif event.kind is EventKind.USER:
            self._add_user(event)
        elif event.kind is EventKind.TOOL_USE:
            self._add_tool_use(event)
        elif event.kind is EventKind.TOOL_RESULT:
            if event.is_error:
                self._errors.append(ToolError(
                    timestamp=event.timestamp,
                    tool_use_id=event.tool_use_id,
                    content=event.content,
                    parent_id=event.parent_id,
                ))
        elif event.kind is EventKind.ASSISTANT and event.cost_bearing:
            self._add_assistant(event)

        if event.timestamp is not None:
            ts = event.timestamp
            self._timestamps.append(ts)
            self._distinct_timestamps.add(ts)
            if self._start is None or ts < self._start:
                self._start = ts
            if self._end is None or ts > self._end:
                self._end = ts

    def _add_summary(self, event: Event) -> None:
        if event.summary:
            self._summary = event.summary
        if event.working_directory:
            self._conversation_name = event.working_directory
        if event.metadata_cwd:
            self._project_path = event.metadata_cwd
        if event.thread_summary:
            self._thread_summary = event.thread_summary
        if event.metadata_summary:
            self._metadata_summary = event.metadata_summary

    def _add_user(self, event: Event) -> None:
        if not event.text:
            return
        if self._first_user_message is None:
            self._first_user_message = event.text[:TITLE_MAX_LENGTH]
        if event.command:
            self._commands.append(CommandInvocation(
                command=event.command,
                timestamp=event.timestamp,
                full_text=event.text,
            ))

    def _add_tool_use(self, event: Event) -> None:
        record = self._tool_usage.setdefault(event.tool_name, ToolUsageRecord())
        record.count += 1
        record.executions.append(ToolExecution(
            timestamp=event.timestamp,
            id=event.tool_id,
            parent_id=event.parent_id,
            input=event.tool_input,
        ))

    def _add_assistant(self, event: Event) -> None:
        self._total_cost += event.cost
        self._total_tokens = self._total_tokens + event.usage
        self._message_count += 1

        model = self._models.setdefault(event.model, ModelUsageRecord())
        model.count += 1
        model.cost += event.cost
        model.tokens = model.tokens + event.usage

        attribute_tool_cost(self._tool_usage, event.parent_id, event.cost)

        sample = burn_rate_sample(self._last_cost_timestamp, event)
        if sample is not None:
            self._burn_rate.append(sample)
        if event.timestamp is not None:
            self._last_cost_timestamp = event.timestamp

    def _correlate_errors(self) -> None:
        """Count each error result against the tool call it answers."""
        tool_by_call_id = {
            execution.id: name
            for name, record in self._tool_usage.items()
            for execution in record.executions
            if execution.id
        }
        for error in self._errors:
            name = tool_by_call_id.get(error.tool_use_id)
            if name is not None:
                self._tool_usage[name].error_count += 1

    def finish(self) -> Conversation:
        self._correlate_errors()

        duration = 0.0
        if len(self._distinct_timestamps) >= 2:
            duration = minutes_between(self._start, self._end)

        return Conversation(
            conversation_id=self.conversation_id,
            project_name=self.project_name,
            session_id=self._session_id,
            title=resolve_title(
                self._thread_summary,
                self._metadata_summary,
                self._summary,
                self._first_user_message,
            ),
            summary=self._summary or "",
            conversation_name=self._conversation_name,
            project_path=self._project_path,
            total_cost=self._total_cost,
            total_tokens=self._total_tokens,
            message_count=self._message_count,
            start_time=self._start,
            end_time=self._end,
            duration=duration,
            tool_usage=self._tool_usage,
            models=self._models,
            commands=self._commands,
            errors=self._errors,
            burn_rate=self._burn_rate,
            message_timestamps=self._timestamps,
            working_directories=sorted(self._working_directories),
        )


def fold_events(
    conversation_id: str, project_name: str, events: Iterable[Event],
) -> Conversation:
    """Fold an ordered event sequence into a Conversation."""
    accumulator = ConversationAccumulator(conversation_id, project_name)
    for event in events:
        accumulator.add(event)
    return accumulator.finish()
