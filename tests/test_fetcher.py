import hashlib
from pathlib import Path

from conftest import ExplodingRunner, create_repo, requires_git

from cail.modules import fetcher
from cail.modules.models import FetchStatus, TargetSpec


def _spec(url, **kwargs) -> TargetSpec:
    return TargetSpec(name="demo", repository_url=url, subdirectory="demo", **kwargs)


def _snapshot(path: Path) -> dict:
    return {
        p.relative_to(path).as_posix(): hashlib.sha256(p.read_bytes()).hexdigest()
        for p in sorted(path.rglob("*"))
        if p.is_file()
    }


@requires_git
def test_fetch_clones_once_then_reports_already_present(tmp_path: Path) -> None:
    repo = create_repo(tmp_path / "upstream", {"README.md": "hello\n"})
    ws = tmp_path / "ws"
    spec = _spec(str(repo))

    first = fetcher.fetch(spec, ws)
    after_first = _snapshot(ws / "demo")
    second = fetcher.fetch(spec, ws)

    assert first.status is FetchStatus.CLONED
    assert second.status is FetchStatus.ALREADY_PRESENT
    assert (ws / "demo" / "README.md").read_text() == "hello\n"
    assert _snapshot(ws / "demo") == after_first


@requires_git
def test_existing_tree_is_not_touched_even_with_local_edits(tmp_path: Path) -> None:
    repo = create_repo(tmp_path / "upstream", {"README.md": "hello\n"})
    ws = tmp_path / "ws"
    spec = _spec(str(repo))
    fetcher.fetch(spec, ws)
    (ws / "demo" / "README.md").write_text("local edit\n")

    outcome = fetcher.fetch(spec, ws, runner=ExplodingRunner())

    assert outcome.status is FetchStatus.ALREADY_PRESENT
    assert (ws / "demo" / "README.md").read_text() == "local edit\n"


@requires_git
def test_clone_failure_keeps_git_message(tmp_path: Path) -> None:
    outcome = fetcher.fetch(_spec(str(tmp_path / "no-such-repo")), tmp_path / "ws")

    assert outcome.status is FetchStatus.FAILED
    assert not outcome.ok
    assert "no-such-repo" in outcome.reason
    assert outcome.returncode == 128


@requires_git
def test_empty_directory_is_cloned_into(tmp_path: Path) -> None:
    repo = create_repo(tmp_path / "upstream", {"a.txt": "a"})
    ws = tmp_path / "ws"
    (ws / "demo").mkdir(parents=True)

    outcome = fetcher.fetch(_spec(str(repo)), ws)

    assert outcome.status is FetchStatus.CLONED
    assert (ws / "demo" / "a.txt").exists()


def test_file_in_the_way_fails_without_spawning(tmp_path: Path) -> None:
    (tmp_path / "demo").write_text("not a directory")

    outcome = fetcher.fetch(_spec("https://example.com/demo.git"), tmp_path, runner=ExplodingRunner())

    assert outcome.status is FetchStatus.FAILED
    assert "not a directory" in outcome.reason


def test_target_without_repository_needs_no_fetch(tmp_path: Path) -> None:
    outcome = fetcher.fetch(_spec(None), tmp_path, runner=ExplodingRunner())

    assert outcome.status is FetchStatus.NOT_REQUIRED
    assert outcome.ok


def test_clone_command_depth_prefers_target_setting(tmp_path: Path) -> None:
    dest = tmp_path / "demo"

    assert fetcher.clone_command(_spec("u"), dest) == ("git", "clone", "u", str(dest))
    assert fetcher.clone_command(_spec("u"), dest, depth=1) == ("git", "clone", "--depth", "1", "u", str(dest))
    assert fetcher.clone_command(_spec("u", clone_depth=5), dest, depth=1)[2:4] == ("--depth", "5")
