"""Pytest configuration and fixtures for flowmap tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, Optional, Tuple

import pytest

from flowmap_cli.line_mapper import split_lines
from flowmap_cli.models import Annotation, ParsedComment


@pytest.fixture(autouse=True)
def _isolate_global_config(tmp_path_factory, monkeypatch):
    """Keep the developer's ~/.flowmap/config.toml out of every test."""
    home = tmp_path_factory.mktemp("flowmap_home")
    monkeypatch.setattr("flowmap_cli.config.BASE_DIR", home)
    monkeypatch.setattr("flowmap_cli.config.CONFIG_FILE", home / "config.toml")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


def annotation_at(
    text: str,
    line: int,
    *,
    file_path: str = "src/service.py",
    flow_name: str = "checkout",
    current_node: str = "A",
    next_node: str = "B",
    before: int = 3,
    after: int = 3,
    commit_hash: str = "c0ffee",
    symbol_path: Optional[str] = None,
) -> Annotation:
    """Build an annotation whose stored context is cut from *text* at *line*."""
    lines = split_lines(text)
    idx = line - 1
    return Annotation(
        id=f"local/repo::{flow_name}::{file_path}:{line}",
        repo_id="local/repo",
        file_path=file_path,
        commit_hash=commit_hash,
        line=line,
        flow_name=flow_name,
        current_node=current_node,
        next_node=next_node,
        context_before=tuple(lines[max(0, idx - before): idx]),
        context_line=lines[idx],
        context_after=tuple(lines[idx + 1: idx + 1 + after]),
        symbol_path=symbol_path,
        raw_comment=f"#@#@#@ {flow_name} : {current_node} => {next_node}",
    )


def make_comment(
    flow_name: str,
    current_node: str,
    next_node: str,
    relative_path: str = "src/service.py",
    line: int = 1,
    cross: bool = False,
) -> ParsedComment:
    return ParsedComment(
        flow_name=flow_name,
        current_node=current_node,
        next_node=next_node,
        file_path=f"/repo/{relative_path}",
        relative_path=relative_path,
        line=line,
        context_line=f"# {flow_name} : {current_node} => {next_node}",
        cross_declared=cross,
    )


def make_stored(
    flow_name: str,
    current_node: str,
    next_node: str,
    file_path: str = "src/service.py",
    line: int = 1,
) -> Annotation:
    return Annotation(
        id=f"local/repo::{flow_name}::{file_path}:{line}",
        file_path=file_path,
        commit_hash="c0ffee",
        line=line,
        flow_name=flow_name,
        current_node=current_node,
        next_node=next_node,
        context_line=f"# {flow_name} : {current_node} => {next_node}",
    )


class FakeContentLoader:
    """In-memory ContentLoader: historical content by (commit, path), current by path."""

    def __init__(
        self,
        history: Optional[Dict[Tuple[str, str], str]] = None,
        current: Optional[Dict[str, str]] = None,
    ):
        self.history = dict(history or {})
        self.current = dict(current or {})
        self.revision_calls = []
        self.current_calls = []

    async def get_file_at_revision(self, commit, relative_path):
        self.revision_calls.append((commit, relative_path))
        return self.history.get((commit, relative_path))

    async def get_current_file_content(self, relative_path):
        self.current_calls.append(relative_path)
        return self.current.get(relative_path)


class FakeGit:
    """Stands in for GitClient in export tests."""

    def __init__(
        self,
        head: str = "abc123def456",
        repo_id: str = "github.com/acme/shop",
        history: Optional[Dict[Tuple[str, str], str]] = None,
    ):
        self.head = head
        self.repo_id = repo_id
        self.history = dict(history or {})

    async def get_head_commit(self):
        return self.head

    async def get_repo_id(self):
        return self.repo_id

    async def get_file_at_revision(self, commit, relative_path):
        return self.history.get((commit, relative_path))


@pytest.fixture
def numbered_source() -> str:
    """Twenty distinct lines; line N reads ``value_N = N``."""
    return "".join(f"value_{n} = {n}\n" for n in range(1, 21))


@pytest.fixture
def sample_python_code() -> str:
    """Two functions sharing an identical body."""
    return '''def alpha(items):
    total = 0
    for item in items:
        total += item
    return total


def beta(items):
    total = 0
    for item in items:
        total += item
    return total
'''
