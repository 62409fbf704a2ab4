"""Shared pytest fixtures."""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpacl import logging as acl_logging


@pytest.fixture
def decisions_log(tmp_path, monkeypatch):
    """Route decision events to a temp JSONL file; returns a reader for the events."""
    path = tmp_path / "decisions.jsonl"
    f = open(path, "a", buffering=1)
    monkeypatch.setattr(acl_logging, "_decisions_file", f)

    def read_events() -> list[dict]:
        f.flush()
        with open(path) as r:
            return [json.loads(line) for line in r if line.strip()]

    yield read_events
    f.close()
