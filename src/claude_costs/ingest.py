"""Batch ingestion: discovers log files and turns each one into a Conversation.

Layout: ``<root>/<project>/<conversation>.jsonl``. Each file is parsed as an
independent task; results are merged only after every task has finished.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

from claude_costs.accumulator import ConversationAccumulator
from claude_costs.cost import PricingTable
from claude_costs.models import Conversation
from claude_costs.parser import ParseStats, read_events

logger = logging.getLogger(__name__)

LOG_SUFFIX = ".jsonl"
DEFAULT_MAX_FILE_BYTES = 100 * 1024 * 1024


@dataclass(frozen=True)
class SkippedFile:
    name: str  # base name only, never the full path
    reason: str


@dataclass
class FileResult:
    conversation: Conversation | None
    stats: ParseStats
    skipped: SkippedFile | None = None


@dataclass
class IngestResult:
    conversations: list[Conversation] = field(default_factory=list)
    skipped: list[SkippedFile] = field(default_factory=list)
    stats: ParseStats = field(default_factory=ParseStats)
    diagnostics: list[str] = field(default_factory=list)


def discover_log_files(root: Path) -> list[tuple[str, Path]]:
    """Find ``(project_name, file)`` pairs one level below each project directory."""
    root = Path(root)
    found: list[tuple[str, Path]] = []
    for project_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        for log_file in sorted(project_dir.glob(f"*{LOG_SUFFIX}")):
            if log_file.is_file():
                found.append((project_dir.name, log_file))
    return found


def is_within(path: Path, root: Path) -> bool:
    """True if ``path`` resolves (symlinks included) to a location under ``root``."""
    try:
        resolved = path.resolve()
        resolved_root = root.resolve()
    except (OSError, RuntimeError):
        return False
    return resolved == resolved_root or resolved_root in resolved.parents


def parse_conversation_file(
    file_path: Path,
    root: Path,
    pricing: PricingTable,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    project_name: str | None = None,
) -> FileResult:
    """Parse one log file. File-level problems come back as a SkippedFile."""
    file_path = Path(file_path)
    stats = ParseStats()
    name = file_path.name

    if not is_within(file_path, Path(root)):
        return FileResult(None, stats, SkippedFile(name, "outside log directory"))

    try:
        size = file_path.stat().st_size
    except OSError as e:
        return FileResult(None, stats, SkippedFile(name, f"unreadable: {e.strerror or e}"))
    if size > max_file_bytes:
        return FileResult(None, stats, SkippedFile(name, f"file too large ({size} bytes)"))

    accumulator = ConversationAccumulator(
        conversation_id=file_path.stem,
        project_name=project_name or file_path.parent.name,
    )
    try:
        for event in read_events(file_path, pricing, stats):
            accumulator.add(event)
    except OSError as e:
        return FileResult(None, stats, SkippedFile(name, f"unreadable: {e.strerror or e}"))
    except Exception as e:
        logger.exception("Failed to parse %s", name)
        return FileResult(None, stats, SkippedFile(name, f"unreadable: {e}"))

    return FileResult(accumulator.finish(), stats)


def load_conversations(
    root: Path,
    pricing: PricingTable,
    max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
    workers: int = 8,
) -> IngestResult:
    """Parse every log file under ``root`` into Conversations.

    A missing root yields an empty result with a diagnostic.
    """
    root = Path(root)
    result = IngestResult()

    if not root.is_dir():
        logger.error("Log directory not found: %s", root)
        result.diagnostics.append(f"Log directory not found: {root}")
        return result

    try:
        files = discover_log_files(root)
    except OSError as e:
        logger.error("Cannot list log directory %s: %s", root, e)
        result.diagnostics.append(f"Cannot list log directory {root.name}: {e.strerror or e}")
        return result
    if not files:
        return result

    with ThreadPoolExecutor(max_workers=max(workers, 1)) as pool:
        futures = [
            pool.submit(parse_conversation_file, path, root, pricing, max_file_bytes, project)
            for project, path in files
        ]
        file_results = [future.result() for future in futures]

    for file_result in file_results:
        result.stats = result.stats + file_result.stats
        if file_result.skipped is not None:
            logger.warning(
                "Skipped %s: %s", file_result.skipped.name, file_result.skipped.reason,
            )
            result.skipped.append(file_result.skipped)
            result.diagnostics.append(
                f"Skipped {file_result.skipped.name}: {file_result.skipped.reason}"
            )
        elif file_result.conversation is not None:
            result.conversations.append(file_result.conversation)

    if result.stats.errors:
        logger.info("Ignored %d unparsable lines", result.stats.errors)

    return result
