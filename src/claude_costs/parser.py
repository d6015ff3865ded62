"""JSONL record parser: turns one log line into a typed Event.

Parsing is stateless: a line either becomes an Event or a ParseFailure,
and a failure never stops the caller from reading the next line.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator

from claude_costs.cost import PricingTable, calculate_cost
from claude_costs.models import Event, EventKind, UsageTokens

logger = logging.getLogger(__name__)

UNKNOWN_TOOL = "unknown"

# "/review some args" -> "review"
_COMMAND_RE = re.compile(r"^/(\S+)")


@dataclass(frozen=True)
class ParseFailure:
    reason: str  # "malformed" or "unrecognized"
    detail: str = ""


@dataclass
class ParseStats:
    """Per-file (or merged) line counters."""

    lines: int = 0
    events: int = 0
    malformed: int = 0
    unrecognized: int = 0

    @property
    def errors(self) -> int:
        return self.malformed + self.unrecognized

    def record(self, result: Event | ParseFailure) -> None:
        self.lines += 1
        if isinstance(result, Event):
            self.events += 1
        elif result.reason == "malformed":
            self.malformed += 1
        else:
            self.unrecognized += 1

    def __add__(self, other: ParseStats) -> ParseStats:
        return ParseStats(
            lines=self.lines + other.lines,
            events=self.events + other.events,
            malformed=self.malformed + other.malformed,
            unrecognized=self.unrecognized + other.unrecognized,
        )


def parse_line(raw: str, pricing: PricingTable) -> Event | ParseFailure | None:
    """Parse a single log line.

    Returns None for blank lines, a ParseFailure for anything that is not a
    JSON object with a known ``type``, and an Event otherwise.
    """
    line = raw.strip()
    if not line:
        return None

    try:
        data = json.loads(line)
    except (json.JSONDecodeError, RecursionError) as e:
        return ParseFailure("malformed", str(e))

    if not isinstance(data, dict):
        return ParseFailure("malformed", "line is not a JSON object")

    try:
        kind = EventKind(data.get("type"))
    except ValueError:
        return ParseFailure("unrecognized", f"type={data.get('type')!r}")

    return _build_event(kind, data, pricing)


def _build_event(kind: EventKind, data: dict, pricing: PricingTable) -> Event:
    fields = {
        "kind": kind,
        "timestamp": _parse_timestamp(data.get("timestamp")),
        "session_id": _str(data.get("sessionId")) or "",
        "parent_id": _str(data.get("parentUUID")),
        "uuid": _str(data.get("uuid") or data.get("id") or data.get("UUID")),
        "cwd": _str(data.get("cwd")) or "",
    }

    message = data.get("message")
    if not isinstance(message, dict):
        message = {}

    if kind is EventKind.ASSISTANT:
        usage = message.get("usage")
        model = _str(message.get("model"))
        fields["model"] = model
        if isinstance(usage, dict) and model:
            tokens = UsageTokens.from_usage(usage)
            fields["usage"] = tokens
            fields["cost"] = calculate_cost(tokens, pricing.rate(model))
            fields["cost_bearing"] = True

    elif kind is EventKind.TOOL_USE:
        tool_use = data.get("tool_use")
        if not isinstance(tool_use, dict):
            tool_use = {}
        fields["tool_name"] = _str(tool_use.get("name")) or UNKNOWN_TOOL
        fields["tool_id"] = _str(tool_use.get("id"))
        fields["tool_input"] = tool_use.get("input")

    elif kind is EventKind.TOOL_RESULT:
        fields["tool_use_id"] = _str(data.get("tool_use_id"))
        fields["is_error"] = bool(data.get("is_error", False))
        fields["content"] = data.get("content")

    elif kind is EventKind.USER:
        text = _str(data.get("text"))
        if not text and isinstance(message.get("content"), str):
            text = message["content"]
        fields["text"] = text or None
        if text:
            match = _COMMAND_RE.match(text)
            if match:
                fields["command"] = match.group(1)

    elif kind is EventKind.SUMMARY:
        fields["summary"] = _str(data.get("summary"))
        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            fields["thread_summary"] = _str(metadata.get("thread_summary"))
            fields["metadata_summary"] = _str(metadata.get("summary"))
            fields["working_directory"] = _str(
                metadata.get("workingDirectory") or metadata.get("cwd")
            )
            fields["metadata_cwd"] = _str(metadata.get("cwd"))

    return Event(**fields)


def iter_events(
    lines: Iterable[str],
    pricing: PricingTable,
    stats: ParseStats | None = None,
    source: str = "",
) -> Iterator[Event]:
    """Parse lines in order, yielding events and counting failures in ``stats``."""
    if stats is None:
        stats = ParseStats()
    for line_num, raw in enumerate(lines, start=1):
        result = parse_line(raw, pricing)
        if result is None:
            continue
        stats.record(result)
        if isinstance(result, ParseFailure):
            logger.debug(
                "Skipping %s line %d in %s: %s",
                result.reason, line_num, source or "<stream>", result.detail,
            )
            continue
        yield result


def read_events(
    file_path: Path, pricing: PricingTable, stats: ParseStats | None = None,
) -> Iterator[Event]:
    """Stream events from a JSONL file."""
    file_path = Path(file_path)
    with open(file_path, encoding="utf-8", errors="replace") as f:
        yield from iter_events(f, pricing, stats, source=file_path.name)


def _str(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return str(value)


def _parse_timestamp(ts) -> datetime | None:
    """Parse an ISO 8601 timestamp string; anything else yields None."""
    if not isinstance(ts, str) or not ts:
        return None
    try:
        # Handle Z suffix
        parsed = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    # Naive timestamps are taken as UTC so they compare with aware ones
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
