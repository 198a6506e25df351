# conftest.py
from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Iterable

import pytest

from rulegraph.config import Settings
from rulegraph.tracker import ArtifactTracker
from rulegraph.ui.console import Console, set_console
from rulegraph.workflow import Workflow


@pytest.fixture(autouse=True)
def quiet_console():
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    """Temporary working directory; run= callables see paths relative to it."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def write(workdir: Path) -> Callable[..., Path]:
    def _write(rel: str, text: str = "x\n", *, age: float = 0.0) -> Path:
        p = workdir / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text)
        if age:
            past = time.time() - age
            os.utime(p, (past, past))
        return p

    return _write


@pytest.fixture
def tracker(workdir: Path) -> ArtifactTracker:
    return ArtifactTracker(workdir)


@pytest.fixture
def make_workflow(workdir: Path, quiet_console) -> Callable[..., Workflow]:
    def _make(rules: Iterable, **settings) -> Workflow:
        settings.setdefault("latency_wait", 0)
        return Workflow(list(rules), workdir=workdir, settings=Settings(**settings), console=quiet_console)

    return _make


def copy_job(job) -> None:
    """run= action: concatenate every input into every output."""
    data = "".join(Path(p).read_text() for p in job.input)
    for out in job.output:
        Path(out).write_text(data)


def touch_job(job) -> None:
    for out in job.output:
        Path(out).write_text(f"{job.rule.name}\n")
