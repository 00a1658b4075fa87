from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path

import pytest

from flag_exorcist import cli
from gitrepo import GitRepo

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

FLAGS = "ENABLE_BETA = False\n"
VIEWS = "from flags import ENABLE_BETA\n\n\ndef render():\n    return ENABLE_BETA\n"


@pytest.fixture(autouse=True)
def _isolate_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    repo = GitRepo(tmp_path / "repo")
    repo.write("flags.py", FLAGS)
    repo.write("app/views.py", VIEWS)
    repo.commit("add beta flag", datetime(2020, 3, 14, 9, tzinfo=timezone.utc))
    return repo


def test_stale_flag_exits_with_findings(repo: GitRepo, capsys: pytest.CaptureFixture[str]) -> None:
    result = cli.main(
        ["--path", str(repo.root), "--symbol", "ENABLE_BETA", "--cutoff-days", "30"],
        environ={},
    )

    assert result == 1
    out = capsys.readouterr().out
    assert out == (
        "app/views.py:5:12: Flag 'ENABLE_BETA', added on 2020-03-14, is more than 30 days old\n"
    )


def test_fresh_flag_exits_clean(repo: GitRepo, capsys: pytest.CaptureFixture[str]) -> None:
    result = cli.main(
        ["--path", str(repo.root), "--symbol", "ENABLE_BETA", "--cutoff-days", "100000"],
        environ={},
    )

    assert result == 0
    assert capsys.readouterr().out == ""


def test_very_long_cutoff_exits_clean(repo: GitRepo, capsys: pytest.CaptureFixture[str]) -> None:
    result = cli.main(
        ["--path", str(repo.root), "--symbol", "ENABLE_BETA", "--cutoff-days", "1000000"],
        environ={},
    )

    assert result == 0
    assert capsys.readouterr().out == ""


def test_uncommitted_flag_is_not_reported(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("README.md", "hello\n")
    repo.commit("readme", datetime(2020, 1, 1, tzinfo=timezone.utc))
    repo.write("flags.py", FLAGS)
    repo.write("app/views.py", VIEWS)

    result = cli.main(
        ["--path", str(repo.root), "--symbol", "ENABLE_BETA", "--cutoff-days", "1"],
        environ={},
    )

    assert result == 0


def test_configuration_from_environment(
    repo: GitRepo, capsys: pytest.CaptureFixture[str]
) -> None:
    result = cli.main(
        ["--path", str(repo.root), "--format", "json"],
        environ={"FLAG_SYMBOLS": "ENABLE_BETA,UNUSED_FLAG", "CUTOFF": "30"},
    )

    assert result == 1
    document = json.loads(capsys.readouterr().out)
    assert document["summary"] == {"by_symbol": {"ENABLE_BETA": 1}, "total": 1}
    finding = document["diagnostics"][0]
    assert finding["path"] == "app/views.py"
    assert finding["line"] == 5
    assert finding["cutoff_days"] == 30
    assert finding["introduced_at"].startswith("2020-03-14")


def test_missing_symbols_is_fatal(repo: GitRepo, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--path", str(repo.root), "--cutoff-days", "30"], environ={})

    assert excinfo.value.code == 2
    assert "flag symbol" in capsys.readouterr().err


def test_missing_repository_is_fatal(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    project = tmp_path / "project"
    project.mkdir()
    (project / "flags.py").write_text(FLAGS)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(
            ["--path", str(project), "--symbol", "ENABLE_BETA", "--cutoff-days", "30"],
            environ={},
        )

    assert excinfo.value.code == 2
    err = capsys.readouterr().err
    assert "flag-exorcist: error: cannot open git repository" in err


def test_repo_option_accepts_subdirectory(repo: GitRepo, capsys: pytest.CaptureFixture[str]) -> None:
    result = cli.main(
        [
            "--path",
            str(repo.root),
            "--repo",
            str(repo.root / "app"),
            "--symbol",
            "ENABLE_BETA",
            "--cutoff-days",
            "30",
        ],
        environ={},
    )

    assert result == 1
    assert capsys.readouterr().out.startswith("app/views.py:5:12: ")


def test_help_exits_zero() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--help"])
    assert excinfo.value.code == 0
