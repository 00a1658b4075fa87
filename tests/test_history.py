from __future__ import annotations

import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path

import pytest

from flag_exorcist.errors import HistoryTimeout, RepositoryError
from flag_exorcist.history import GitHistory
from flag_exorcist.models import Found, NotFound
from flag_exorcist.resolver import HistoryResolver
from gitrepo import GitRepo

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@pytest.fixture(autouse=True)
def _isolate_git(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_CEILING_DIRECTORIES", str(tmp_path))


def test_open_rejects_directory_outside_repository(tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()

    with pytest.raises(RepositoryError, match="cannot open git repository"):
        GitHistory.open(plain)


def test_open_rejects_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(RepositoryError, match="not a directory"):
        GitHistory.open(tmp_path / "missing")


def test_open_resolves_top_level_from_subdirectory(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("pkg/flags.py", "FeatureA = True\n")
    head = repo.commit("add flag", datetime(2020, 1, 1, tzinfo=timezone.utc))

    history = GitHistory.open(repo.root / "pkg")

    assert history.root == repo.root.resolve()
    assert history.head == head


def test_unborn_repository_has_no_commits(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")

    history = GitHistory.open(repo.root)

    assert history.head is None
    assert history.commits() == []


def test_commits_are_listed_oldest_first(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("flags.py", "X = 1\n")
    first = repo.commit("first", datetime(2020, 1, 1, tzinfo=timezone.utc))
    repo.write("flags.py", "X = 2\n")
    second = repo.commit("second", datetime(2020, 2, 1, tzinfo=timezone.utc))

    commits = GitHistory.open(repo.root).commits()

    assert [c.sha for c in commits] == [first, second]
    assert commits[0].parents == ()
    assert commits[1].parents == (first,)
    assert commits[1].authored_at == datetime(2020, 2, 1, tzinfo=timezone.utc)


def test_max_count_keeps_newest_commits(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    shas = []
    for month in (1, 2, 3):
        repo.write("flags.py", f"X = {month}\n")
        shas.append(repo.commit(f"c{month}", datetime(2020, month, 1, tzinfo=timezone.utc)))

    commits = GitHistory.open(repo.root).commits(max_count=2)

    assert [c.sha for c in commits] == shas[1:]


def test_blob_ids_and_contents(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("README.md", "hello\n")
    repo.commit("readme", datetime(2020, 1, 1, tzinfo=timezone.utc))
    repo.write("pkg/flags.py", "FeatureA = True\n")
    second = repo.commit("flags", datetime(2020, 2, 1, tzinfo=timezone.utc))
    history = GitHistory.open(repo.root)
    commits = history.commits()

    blobs = history.blob_ids(commits, "pkg/flags.py")

    assert blobs[commits[0].sha] is None
    oid = blobs[second]
    assert oid is not None
    assert history.read_blob(oid) == "FeatureA = True\n"
    assert history.blob_ids(commits, "pkg")[second] is None


def test_resolver_dates_flag_from_git(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("flags.py", "OTHER = 1\n")
    repo.commit("start", datetime(2019, 6, 1, tzinfo=timezone.utc))
    repo.write("flags.py", "OTHER = 1\nFeatureA = True\n")
    added = repo.commit("add FeatureA", datetime(2020, 1, 15, 10, tzinfo=timezone.utc))
    repo.write("flags.py", "OTHER = 2\nFeatureA = True\n")
    repo.commit("tweak", datetime(2021, 3, 1, tzinfo=timezone.utc))
    resolver = HistoryResolver(GitHistory.open(repo.root))

    result = resolver.resolve("FeatureA", repo.root / "flags.py")

    assert result == Found(
        symbol="FeatureA",
        commit=added,
        introduced_at=datetime(2020, 1, 15, 10, tzinfo=timezone.utc),
    )


def test_resolver_resets_on_reintroduction_in_git(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("flags.py", "FeatureA = True\n")
    repo.commit("add", datetime(2019, 1, 1, tzinfo=timezone.utc))
    repo.remove("flags.py")
    repo.commit("remove", datetime(2019, 6, 1, tzinfo=timezone.utc))
    repo.write("flags.py", "FeatureA = True\n")
    back = repo.commit("re-add", datetime(2020, 1, 1, tzinfo=timezone.utc))

    result = HistoryResolver(GitHistory.open(repo.root)).resolve("FeatureA", "flags.py")

    assert isinstance(result, Found)
    assert result.commit == back


def test_uncommitted_file_is_unknown(tmp_path: Path) -> None:
    repo = GitRepo(tmp_path / "repo")
    repo.write("README.md", "hello\n")
    repo.commit("readme", datetime(2020, 1, 1, tzinfo=timezone.utc))
    repo.write("flags.py", "FeatureA = True\n")

    result = HistoryResolver(GitHistory.open(repo.root)).resolve("FeatureA", "flags.py")

    assert isinstance(result, NotFound)


def test_slow_git_raises_history_timeout(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def stalled(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(subprocess, "run", stalled)
    history = GitHistory(tmp_path, head="0" * 40)

    with pytest.raises(HistoryTimeout, match="did not finish"):
        history.commits(timeout=0.5)
    with pytest.raises(HistoryTimeout):
        history.read_blob("0" * 40, timeout=0.5)
