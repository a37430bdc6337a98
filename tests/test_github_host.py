"""Tests for the GitHub repository host, using an in-memory transport."""

import base64
import json

import httpx
import pytest

from git_agent.db.models import RepositoryRef
from git_agent.errors import ConflictError, HostError, NotFoundError
from git_agent.integrations.github import GitHubHost


class FakeGitHub:
    """Just enough of the REST API for the contents workflow."""

    def __init__(self):
        self.repos: dict[str, dict] = {}
        self.files: dict[tuple[str, str], tuple[str, str]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: int | None = None
        self._sha = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_status:
            return httpx.Response(self.fail_status, json={"message": "boom"})

        parts = request.url.path.strip("/").split("/")
        if parts == ["user"]:
            return httpx.Response(200, json={"login": "octo"})
        if request.method == "POST" and parts == ["user", "repos"]:
            body = json.loads(request.content)
            self.repos[body["name"]] = body
            return httpx.Response(201, json=self._repo_json(body["name"]))
        if parts[0] == "repos" and len(parts) == 3:
            if parts[2] not in self.repos:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self._repo_json(parts[2]))
        if parts[0] == "repos" and parts[3] == "contents":
            return self._contents(request, parts[2], "/".join(parts[4:]))
        return httpx.Response(404, json={"message": "Not Found"})

    def _repo_json(self, name):
        return {
            "name": name,
            "html_url": f"https://github.com/octo/{name}",
            "owner": {"login": "octo"},
            "default_branch": "main",
        }

    def _contents(self, request, repo, path):
        if repo not in self.repos:
            return httpx.Response(404, json={"message": "Not Found"})
        key = (repo, path)
        if request.method == "GET":
            if key not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            content, sha = self.files[key]
            encoded = base64.b64encode(content.encode()).decode()
            return httpx.Response(200, json={"type": "file", "content": encoded, "sha": sha})

        body = json.loads(request.content)
        current = self.files.get(key, (None, None))[1]
        if request.method == "PUT":
            if current and "sha" not in body:
                return httpx.Response(422, json={"message": "sha wasn't supplied"})
            if current and body["sha"] != current:
                return httpx.Response(409, json={"message": "does not match"})
            self._sha += 1
            sha = f"sha{self._sha}"
            self.files[key] = (base64.b64decode(body["content"]).decode(), sha)
            return httpx.Response(201, json={"content": {"sha": sha}})
        if request.method == "DELETE":
            if current is None:
                return httpx.Response(404, json={"message": "Not Found"})
            if body["sha"] != current:
                return httpx.Response(409, json={"message": "does not match"})
            del self.files[key]
            return httpx.Response(200, json={})
        return httpx.Response(405)


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def gh_host(github):
    client = httpx.Client(transport=httpx.MockTransport(github.handler), base_url="https://api.github.test")
    host = GitHubHost(token="t", client=client)
    yield host
    host.close()


@pytest.fixture
def repo(gh_host):
    return gh_host.ensure_repository("todo-app", "A todo app")


class TestRepositories:
    def test_creates_missing_repository(self, repo, github):
        assert repo == RepositoryRef(
            name="todo-app", url="https://github.com/octo/todo-app", owner="octo", default_branch="main"
        )
        assert github.repos["todo-app"]["description"] == "A todo app"

    def test_existing_repository_is_reused(self, gh_host, repo, github):
        posts_before = sum(1 for r in github.requests if r.method == "POST")
        assert gh_host.ensure_repository("todo-app", "again") == repo
        assert sum(1 for r in github.requests if r.method == "POST") == posts_before

    def test_requires_token_without_client(self):
        with pytest.raises(HostError):
            GitHubHost(token=None)


class TestContents:
    def test_commit_and_read(self, gh_host, repo):
        revision = gh_host.commit_file(repo, "src/server.js", "const a = 1;", "feat: implement server")

        remote = gh_host.read_file(repo, "src/server.js")
        assert remote.content == "const a = 1;"
        assert remote.revision == revision

    def test_read_missing_returns_none(self, gh_host, repo):
        assert gh_host.read_file(repo, "missing.js") is None

    def test_update_sends_revision(self, gh_host, repo, github):
        first = gh_host.commit_file(repo, "a.js", "one", "first")
        gh_host.commit_file(repo, "a.js", "two", "second", expected_revision=first)

        body = json.loads(github.requests[-1].content)
        assert body["sha"] == first
        assert body["branch"] == "main"

    def test_stale_revision_conflicts(self, gh_host, repo):
        gh_host.commit_file(repo, "a.js", "one", "first")
        with pytest.raises(ConflictError):
            gh_host.commit_file(repo, "a.js", "two", "stale", expected_revision="old")
        with pytest.raises(ConflictError):
            gh_host.commit_file(repo, "a.js", "two", "blind")

    def test_missing_repository(self, gh_host):
        ghost = RepositoryRef(name="ghost", url="https://github.com/octo/ghost", owner="octo")
        with pytest.raises(NotFoundError):
            gh_host.commit_file(ghost, "a.js", "x", "msg")

    def test_delete(self, gh_host, repo):
        revision = gh_host.commit_file(repo, "a.js", "one", "first")
        gh_host.delete_file(repo, "a.js", revision)
        assert gh_host.read_file(repo, "a.js") is None
        with pytest.raises(NotFoundError):
            gh_host.delete_file(repo, "a.js", revision)

    def test_server_error(self, gh_host, repo, github):
        github.fail_status = 502
        with pytest.raises(HostError):
            gh_host.read_file(repo, "a.js")

    def test_transport_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(transport=httpx.MockTransport(refuse), base_url="https://api.github.test")
        host = GitHubHost(token="t", owner="octo", client=client)
        with pytest.raises(HostError):
            host.read_file(RepositoryRef(name="r", url="u", owner="octo"), "a.js")

    def test_close_closes_client(self, github):
        client = httpx.Client(transport=httpx.MockTransport(github.handler), base_url="https://api.github.test")
        GitHubHost(token="t", client=client).close()
        assert client.is_closed
