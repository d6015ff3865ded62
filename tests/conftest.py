"""Shared test fixtures for claude-costs tests."""

import json
from pathlib import Path

import pytest

from claude_costs.config import default_config
from claude_costs.cost import PricingTable

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir():
    """Path to test fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def projects_dir():
    """Log root with two projects: my-project (conv-001, conv-003) and other-project (conv-002)."""
    return FIXTURES_DIR / "projects"


@pytest.fixture
def conv1_jsonl(projects_dir):
    """Tool use, a tool error, a slash command, three priced assistant messages."""
    return projects_dir / "my-project" / "conv-001.jsonl"


@pytest.fixture
def conv2_jsonl(projects_dir):
    """Unknown model priced at default rates, two tool calls."""
    return projects_dir / "other-project" / "conv-002.jsonl"


@pytest.fixture
def pricing():
    return PricingTable()


@pytest.fixture
def config(tmp_path):
    """Default config pointed at an empty temporary log directory."""
    cfg = default_config()
    cfg.log_dir = tmp_path / "projects"
    return cfg


@pytest.fixture
def write_jsonl():
    """Write a list of records (dicts or raw strings) as a JSONL file."""

    def _write(path: Path, records: list, mode: str = "w") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode) as f:
            for record in records:
                f.write(record if isinstance(record, str) else json.dumps(record))
                f.write("\n")
        return path

    return _write
