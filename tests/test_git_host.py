"""Tests for the local git repository host."""

import tempfile
from pathlib import Path

import pytest

from git_agent.db.models import RepositoryRef
from git_agent.errors import ConflictError, NotFoundError, ValidationError
from git_agent.integrations import git as git_mod
from git_agent.integrations.git import LocalGitHost


def _commit_subjects(path):
    output = git_mod.run_git(["log", "--format=%s"], cwd=path)
    return [line for line in output.split("\n") if line]


@pytest.fixture
def workspace():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture
def git_host(workspace):
    return LocalGitHost(workspace)


@pytest.fixture
def repo(git_host):
    return git_host.ensure_repository("todo-app", "A todo app")


class TestRepositories:
    def test_creates_repository(self, repo, workspace):
        assert repo.name == "todo-app"
        assert repo.owner == "local"
        assert repo.url.startswith("file://")
        assert (workspace / "todo-app" / ".git").is_dir()
        assert (workspace / "todo-app" / ".git" / "description").read_text() == "A todo app\n"

    def test_ensure_is_idempotent(self, git_host, repo):
        assert git_host.ensure_repository("todo-app", "changed") == repo

    def test_missing_repository(self, git_host):
        ghost = RepositoryRef(name="ghost", url="file:///nowhere")
        with pytest.raises(NotFoundError):
            git_host.commit_file(ghost, "a.js", "x", "msg")


class TestFiles:
    def test_commit_and_read(self, git_host, repo, workspace):
        revision = git_host.commit_file(repo, "src/server.js", "const a = 1;\n", "feat: implement server")

        remote = git_host.read_file(repo, "src/server.js")
        assert remote.content == "const a = 1;\n"
        assert remote.revision == revision
        assert _commit_subjects(workspace / "todo-app") == ["feat: implement server"]

    def test_read_missing_file(self, git_host, repo):
        assert git_host.read_file(repo, "nope.js") is None

    def test_update_requires_current_revision(self, git_host, repo):
        first = git_host.commit_file(repo, "a.js", "one", "first")

        with pytest.raises(ConflictError):
            git_host.commit_file(repo, "a.js", "two", "blind overwrite")
        with pytest.raises(ConflictError):
            git_host.commit_file(repo, "a.js", "two", "stale", expected_revision="0" * 40)

        second = git_host.commit_file(repo, "a.js", "two", "update", expected_revision=first)
        assert second != first
        assert git_host.read_file(repo, "a.js").content == "two"

    def test_create_with_revision_conflicts(self, git_host, repo):
        with pytest.raises(ConflictError):
            git_host.commit_file(repo, "new.js", "x", "msg", expected_revision="abc")

    def test_same_content_commit_succeeds(self, git_host, repo):
        first = git_host.commit_file(repo, "a.js", "same", "first")
        assert git_host.commit_file(repo, "a.js", "same", "again", expected_revision=first) == first

    def test_delete(self, git_host, repo):
        revision = git_host.commit_file(repo, "a.js", "one", "first")

        with pytest.raises(ConflictError):
            git_host.delete_file(repo, "a.js", "0" * 40)
        git_host.delete_file(repo, "a.js", revision)
        assert git_host.read_file(repo, "a.js") is None

        with pytest.raises(NotFoundError):
            git_host.delete_file(repo, "a.js", revision)

    def test_path_outside_repository(self, git_host, repo):
        with pytest.raises(ValidationError):
            git_host.commit_file(repo, "../escape.js", "x", "msg")


class TestRunGit:
    def test_failure_raises_git_error(self, workspace):
        with pytest.raises(git_mod.GitError):
            git_mod.run_git(["rev-parse", "HEAD"], cwd=workspace)
