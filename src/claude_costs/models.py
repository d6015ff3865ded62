"""Shared data models: the contract between parser, accumulator, and analyzer.

Parser produces Event objects (one per log line). The accumulator folds
the events of one log file into a Conversation. The analyzer and the
live monitor consume these values; nothing downstream mutates them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    SUMMARY = "summary"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"


def _count(value: Any) -> int:
    """Coerce a raw usage counter to a non-negative int (absent → 0)."""
    if isinstance(value, bool):
        return 0
    try:
        count = int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(count, 0)


@dataclass(frozen=True)
class UsageTokens:
    """Token counters for one or more assistant messages.

    ``total`` is always derived from the four categories.
    """

    input: int = 0
    output: int = 0
    cache_write: int = 0
    cache_read: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_write + self.cache_read

    @classmethod
    def from_usage(cls, usage: dict) -> UsageTokens:
        """Build from a raw ``message.usage`` object."""
        return cls(
            input=_count(usage.get("input_tokens")),
            output=_count(usage.get("output_tokens")),
            cache_write=_count(usage.get("cache_creation_input_tokens")),
            cache_read=_count(usage.get("cache_read_input_tokens")),
        )

    def __add__(self, other: UsageTokens) -> UsageTokens:
        if not isinstance(other, UsageTokens):
            return NotImplemented
        return UsageTokens(
            input=self.input + other.input,
            output=self.output + other.output,
            cache_write=self.cache_write + other.cache_write,
            cache_read=self.cache_read + other.cache_read,
        )


@dataclass(frozen=True)
class Event:
    """A single parsed log line."""

    kind: EventKind
    timestamp: datetime | None = None
    session_id: str = ""
    parent_id: str | None = None
    uuid: str | None = None
    cwd: str = ""
    # assistant
    model: str | None = None
    usage: UsageTokens = field(default_factory=UsageTokens)
    cost: float = 0.0
    cost_bearing: bool = False
    # tool_use
    tool_name: str | None = None
    tool_id: str | None = None
    tool_input: Any = None
    # tool_result
    tool_use_id: str | None = None
    is_error: bool = False
    content: Any = None
    # user
    text: str | None = None
    command: str | None = None
    # summary
    summary: str | None = None
    thread_summary: str | None = None
    metadata_summary: str | None = None
    working_directory: str | None = None
    metadata_cwd: str | None = None


@dataclass
class ToolExecution:
    """One tool invocation, kept for later cost attribution."""

    timestamp: datetime | None
    id: str | None
    parent_id: str | None
    input: Any = None


@dataclass
class ToolUsageRecord:
    count: int = 0
    total_cost: float = 0.0
    error_count: int = 0
    executions: list[ToolExecution] = field(default_factory=list)


@dataclass
class ModelUsageRecord:
    count: int = 0
    cost: float = 0.0
    tokens: UsageTokens = field(default_factory=UsageTokens)


@dataclass(frozen=True)
class BurnRateSample:
    """Token consumption between two consecutive cost-bearing messages."""

    timestamp: datetime
    tokens: int  # tokens of the later message
    rate: float  # tokens per minute
    cost: float


@dataclass
class CommandInvocation:
    command: str
    timestamp: datetime | None
    full_text: str


@dataclass
class ToolError:
    timestamp: datetime | None
    tool_use_id: str | None
    content: Any
    parent_id: str | None


@dataclass
class Conversation:
    """Everything extracted from one log file.

    Produced by accumulator.py, consumed by analyzer.py.
    """

    conversation_id: str  # log file name without extension
    project_name: str  # immediate parent directory of the log file
    session_id: str = ""
    title: str = "Untitled"
    summary: str = ""
    conversation_name: str = ""  # metadata working directory label
    project_path: str = ""  # metadata cwd

    total_cost: float = 0.0
    total_tokens: UsageTokens = field(default_factory=UsageTokens)
    message_count: int = 0  # cost-bearing assistant messages
    start_time: datetime | None = None
    end_time: datetime | None = None
    duration: float = 0.0  # minutes

    tool_usage: dict[str, ToolUsageRecord] = field(default_factory=dict)
    models: dict[str, ModelUsageRecord] = field(default_factory=dict)
    commands: list[CommandInvocation] = field(default_factory=list)
    errors: list[ToolError] = field(default_factory=list)
    burn_rate: list[BurnRateSample] = field(default_factory=list)
    message_timestamps: list[datetime] = field(default_factory=list)
    working_directories: list[str] = field(default_factory=list)
