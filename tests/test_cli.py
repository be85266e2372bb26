"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import FakeGit
from flowmap_cli import __version__
from flowmap_cli.cli import app
from flowmap_cli.git import GitError, WorkspaceContentLoader

runner = CliRunner()

SERVICE = (
    "def checkout(cart):\n"
    "    total = cart.total()\n"
    "    # #@#@#@ pay : cart => charge\n"
    "    charge(total)\n"
    "    # #@#@#@ pay : charge => receipt\n"
    "    return receipt(total)\n"
)
HEADER = "".join(f"# header {n}\n" for n in range(5))


@pytest.fixture
def repo(temp_dir: Path, monkeypatch) -> Path:
    """A working tree with one flow, exported at commit c0ffee."""
    (temp_dir / "src").mkdir()
    (temp_dir / "src" / "service.py").write_text(SERVICE)
    monkeypatch.setattr("flowmap_cli.cli.GitClient", lambda root: FakeGit(head="c0ffee"))
    monkeypatch.setattr(
        "flowmap_cli.cli.WorkspaceContentLoader",
        lambda root: WorkspaceContentLoader(root, FakeGit(history={("c0ffee", "src/service.py"): SERVICE})),
    )
    return temp_dir


def _export(repo: Path):
    result = runner.invoke(app, ["export", str(repo)])
    assert result.exit_code == 0, result.stdout
    return result


def _status(repo: Path):
    result = runner.invoke(app, ["status", str(repo), "--json"])
    assert result.exit_code == 0, result.stdout
    return {item["name"]: item for item in json.loads(result.stdout)}


class TestVersion:
    """Global options."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestScanCommand:
    """'fm scan'."""

    def test_lists_comments(self, repo: Path):
        result = runner.invoke(app, ["scan", str(repo)])
        assert result.exit_code == 0
        assert "pay" in result.stdout
        assert "2 comment(s), 0 malformed" in result.stdout

    def test_empty_tree(self, temp_dir: Path):
        result = runner.invoke(app, ["scan", str(temp_dir)])
        assert result.exit_code == 0
        assert "No flow comments found" in result.stdout

    def test_reports_malformed(self, repo: Path):
        (repo / "src" / "bad.py").write_text("# #@#@#@ [oops]\n")
        result = runner.invoke(app, ["scan", str(repo)])
        assert result.exit_code == 0
        assert "malformed" in result.stdout
        assert "[oops]" in result.stdout


class TestExportCommand:
    """'fm export'."""

    def test_writes_database(self, repo: Path):
        result = _export(repo)
        assert "Exported 1 flow(s), 2 annotation(s)" in result.stdout
        payload = json.loads((repo / ".flowmap" / "flows.json").read_text())
        [flow] = payload["flows"].values()
        assert flow["name"] == "pay"
        assert [a["line"] for a in flow["annotations"]] == [3, 5]
        assert {a["commitHash"] for a in flow["annotations"]} == {"c0ffee"}

    def test_git_failure_exits_nonzero(self, repo: Path, monkeypatch):
        class BrokenGit(FakeGit):
            async def get_head_commit(self):
                raise GitError("not a git repository")

        monkeypatch.setattr("flowmap_cli.cli.GitClient", lambda root: BrokenGit())
        result = runner.invoke(app, ["export", str(repo)])
        assert result.exit_code == 1
        assert "not a git repository" in result.stdout


class TestStatusCommand:
    """'fm status'."""

    def test_unsaved_flow_before_export(self, repo: Path):
        flows = _status(repo)
        assert flows["pay"]["id"] == "unsaved::pay"
        assert flows["pay"]["extras"] == 2
        assert not (repo / ".flowmap" / "flows.json").exists()

    def test_loaded_after_export(self, repo: Path):
        _export(repo)
        pay = _status(repo)["pay"]
        assert pay["status"] == "loaded"
        assert (pay["present"], pay["total"], pay["dirty"]) == (2, 2, False)

    def test_moved_after_edit(self, repo: Path):
        _export(repo)
        (repo / "src" / "service.py").write_text(HEADER + SERVICE)
        pay = _status(repo)["pay"]
        assert pay["status"] == "moved"
        assert len(pay["moved"]) == 2
        assert pay["moved"][0]["source_location"]["line_number"] == 8

    def test_missing_after_removal(self, repo: Path):
        _export(repo)
        (repo / "src" / "service.py").write_text(SERVICE.replace("    # #@#@#@ pay : charge => receipt\n", ""))
        assert _status(repo)["pay"]["status"] == "missing"

    def test_table_output(self, repo: Path):
        _export(repo)
        result = runner.invoke(app, ["status", str(repo)])
        assert result.exit_code == 0
        assert "pay" in result.stdout
        assert "loaded" in result.stdout

    def test_corrupt_database(self, repo: Path):
        (repo / ".flowmap").mkdir()
        (repo / ".flowmap" / "flows.json").write_text("{")
        result = runner.invoke(app, ["status", str(repo)])
        assert result.exit_code == 1

    def test_bad_settings_file(self, repo: Path):
        (repo / ".flowmap.toml").write_text("[flowmap\n")
        result = runner.invoke(app, ["status", str(repo)])
        assert result.exit_code == 1


class TestHydrateCommand:
    """'fm hydrate'."""

    def test_follows_inserted_lines(self, repo: Path):
        _export(repo)
        (repo / "src" / "service.py").write_text(HEADER + SERVICE)
        result = runner.invoke(app, ["hydrate", "pay", str(repo), "--json"])
        assert result.exit_code == 0, result.stdout
        payload = json.loads(result.stdout)
        resolutions = [a["resolution"] for a in payload["annotations"]]
        assert [r["kind"] for r in resolutions] == ["auto", "auto"]
        assert [r["line"] for r in resolutions] == [8, 10]
        assert all(r["source"] == "diff" for r in resolutions)

    def test_deleted_file(self, repo: Path):
        _export(repo)
        (repo / "src" / "service.py").unlink()
        result = runner.invoke(app, ["hydrate", "pay", str(repo), "--json"])
        payload = json.loads(result.stdout)
        assert {a["resolution"]["reason"] for a in payload["annotations"]} == {"file-missing"}

    def test_table_output(self, repo: Path):
        _export(repo)
        result = runner.invoke(app, ["hydrate", "pay", str(repo)])
        assert result.exit_code == 0
        assert "auto" in result.stdout

    def test_unknown_flow(self, repo: Path):
        _export(repo)
        result = runner.invoke(app, ["hydrate", "nope", str(repo)])
        assert result.exit_code == 1
        assert "Unknown flow" in result.stdout

    def test_without_database(self, repo: Path):
        result = runner.invoke(app, ["hydrate", "pay", str(repo)])
        assert result.exit_code == 1
        assert "fm export" in result.stdout


class TestCandidatesCommand:
    """'fm candidates'."""

    def test_suggests_new_location(self, repo: Path):
        _export(repo)
        (repo / "src" / "service.py").write_text(HEADER + SERVICE)
        result = runner.invoke(app, ["candidates", "pay", "cart", "charge", str(repo), "--json"])
        assert result.exit_code == 0, result.stdout
        found = json.loads(result.stdout)
        assert found[0]["line"] == 8
        assert found[0]["score"] == 1.0

    def test_unknown_edge(self, repo: Path):
        _export(repo)
        result = runner.invoke(app, ["candidates", "pay", "x", "y", str(repo)])
        assert result.exit_code == 1


class TestConfigCommands:
    """'fm config show|set'."""

    def test_show_defaults(self, temp_dir: Path):
        result = runner.invoke(app, ["config", "show", str(temp_dir), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["tag"] == "#@#@#@"

    def test_set_then_show(self, temp_dir: Path):
        result = runner.invoke(app, ["config", "set", str(temp_dir), "--context-lines", "1", "--exclude-dir", "vendor"])
        assert result.exit_code == 0
        assert (temp_dir / ".flowmap.toml").exists()
        shown = json.loads(runner.invoke(app, ["config", "show", str(temp_dir), "--json"]).stdout)
        assert shown["context_lines"] == 1
        assert shown["exclude_dirs"] == ["vendor"]

    def test_set_nothing(self, temp_dir: Path):
        result = runner.invoke(app, ["config", "set", str(temp_dir)])
        assert result.exit_code == 0
        assert "Nothing to update" in result.stdout
        assert not (temp_dir / ".flowmap.toml").exists()
