"""Shared fixtures: a temporary event log and in-memory collaborators."""

import tempfile
from pathlib import Path

import pytest

from git_agent.core.memory import EventLog, StateProjection
from git_agent.core.workflow import Orchestrator
from git_agent.db.engine import init_db
from git_agent.db.models import ProjectSpec, RemoteFile, RepositoryRef, Task
from git_agent.errors import ConflictError, GenerationError, NotFoundError


class FakeProducer:
    """Returns canned content. ``artifacts`` queues responses (str or exception)."""

    def __init__(self):
        self.spec = ProjectSpec(
            title="Todo App",
            type="Web App",
            complexity="beginner",
            tech_stack=["Node.js"],
            features=["Add todos", "List todos"],
            description="A small todo list",
        )
        self.tasks = [
            Task("Create server", "Express server", "src/server.js", "high"),
            Task("Add routes", "REST routes", "src/routes/", "medium"),
            Task("Write usage notes", "", "docs/usage", "low"),
        ]
        self.artifacts: list = []
        self.fail_spec = False
        self.fail_plan = False
        self.fail_readme = False
        self.calls: list = []

    def propose_spec(self, request):
        self.calls.append(("spec", request.project_name))
        if self.fail_spec:
            raise GenerationError("model unavailable")
        return self.spec

    def propose_plan(self, spec):
        self.calls.append(("plan", spec.title))
        if self.fail_plan:
            raise GenerationError("plan was not JSON")
        return list(self.tasks)

    def generate_artifact(self, spec, task, strict=False):
        self.calls.append(("artifact", task.title, strict))
        if self.artifacts:
            item = self.artifacts.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return f"// {task.title}\nmodule.exports = function run() {{ return true; }};\n"

    def generate_readme(self, spec, repository):
        if self.fail_readme:
            raise GenerationError("readme too short")
        return f"# {spec.title}\n\nGenerated README for {repository.name}."


class FakeHost:
    """In-memory repositories with counter-based revisions."""

    def __init__(self):
        self.repos: dict[str, dict[str, tuple[str, str]]] = {}
        self.commits: list[tuple[str, str, str]] = []
        self.ensure_calls = 0
        self._counter = 0
        self.closed = False

    def ensure_repository(self, name, description):
        self.ensure_calls += 1
        self.repos.setdefault(name, {})
        return RepositoryRef(name=name, url=f"https://git.example.test/tester/{name}", owner="tester")

    def read_file(self, repository, path):
        files = self._files(repository)
        if path not in files:
            return None
        content, revision = files[path]
        return RemoteFile(path=path, content=content, revision=revision)

    def commit_file(self, repository, path, content, message, expected_revision=None):
        files = self._files(repository)
        current = files[path][1] if path in files else None
        if current != expected_revision:
            raise ConflictError(f"{path}: expected {expected_revision}, found {current}")
        self._counter += 1
        revision = f"rev{self._counter}"
        files[path] = (content, revision)
        self.commits.append((repository.name, path, message))
        return revision

    def delete_file(self, repository, path, expected_revision):
        files = self._files(repository)
        if path not in files:
            raise NotFoundError(path)
        if files[path][1] != expected_revision:
            raise ConflictError(path)
        del files[path]

    def close(self):
        self.closed = True

    def _files(self, repository):
        if repository.name not in self.repos:
            raise NotFoundError(repository.name)
        return self.repos[repository.name]


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def notify(self, event_kind, payload):
        self.events.append((event_kind, payload))

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.events]


@pytest.fixture
def db_path():
    """Path to a fresh temporary event log database."""
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "test.db"
        init_db(path).close()
        yield path


@pytest.fixture
def event_log(db_path):
    return EventLog(db_path)


@pytest.fixture
def projection(event_log):
    return StateProjection(event_log)


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(projection, producer, host, notifier):
    return Orchestrator(projection, producer, host, notifier)
