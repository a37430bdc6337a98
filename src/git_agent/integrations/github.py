"""Repository host backed by the GitHub REST API."""

import base64
import logging
from urllib.parse import quote

import httpx

from git_agent.db.models import RemoteFile, RepositoryRef
from git_agent.errors import ConflictError, HostError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT = 30.0


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase


def _check(response: httpx.Response, context: str):
    """Map a GitHub error response onto the workflow error types."""
    if response.is_success:
        return
    message = f"{context}: {response.status_code} {_error_message(response)}"
    if response.status_code == 404:
        raise NotFoundError(message)
    if response.status_code in (409, 422):
        raise ConflictError(message)
    raise HostError(message)


class GitHubHost:
    """RepositoryHost over the contents API. Revisions are blob shas."""

    def __init__(
        self,
        token: str | None,
        owner: str | None = None,
        api_url: str = DEFAULT_API_URL,
        client: httpx.Client | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if client is None:
            if not token:
                raise HostError("GitHub not configured: GITHUB_TOKEN not set")
            client = httpx.Client(
                base_url=api_url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
                timeout=timeout,
            )
        self._client = client
        self._owner = owner
        self._login: str | None = None

    def close(self):
        self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise HostError(f"GitHub request {method} {url} failed: {e}") from e

    @property
    def login(self) -> str:
        """Login of the authenticated user."""
        if self._login is None:
            response = self._request("GET", "/user")
            _check(response, "Fetching authenticated user")
            self._login = response.json()["login"]
        return self._login

    @property
    def owner(self) -> str:
        return self._owner or self.login

    def ensure_repository(self, name: str, description: str) -> RepositoryRef:
        owner = self.owner
        response = self._request("GET", f"/repos/{owner}/{name}")
        if response.status_code == 404:
            create_url = "/user/repos" if owner == self.login else f"/orgs/{owner}/repos"
            response = self._request(
                "POST",
                create_url,
                json={"name": name, "description": description, "private": False, "auto_init": True},
            )
            if response.status_code == 422:
                # Created concurrently; fall through to the existing repository
                response = self._request("GET", f"/repos/{owner}/{name}")
            else:
                _check(response, f"Creating repository {owner}/{name}")
                logger.info("Created GitHub repository %s/%s", owner, name)
        _check(response, f"Fetching repository {owner}/{name}")

        data = response.json()
        return RepositoryRef(
            name=data["name"],
            url=data["html_url"],
            owner=data["owner"]["login"],
            default_branch=data.get("default_branch") or "main",
        )

    def _contents_url(self, repository: RepositoryRef, path: str) -> str:
        owner = repository.owner or self.owner
        return f"/repos/{owner}/{repository.name}/contents/{quote(path.lstrip('/'))}"

    def read_file(self, repository: RepositoryRef, path: str) -> RemoteFile | None:
        response = self._request(
            "GET", self._contents_url(repository, path), params={"ref": repository.default_branch}
        )
        if response.status_code == 404:
            return None
        _check(response, f"Reading {path}")

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            raise HostError(f"{path} is not a file in {repository.name}")
        content = base64.b64decode(data.get("content") or "").decode("utf-8")
        return RemoteFile(path=path, content=content, revision=data["sha"])

    def commit_file(
        self,
        repository: RepositoryRef,
        path: str,
        content: str,
        message: str,
        expected_revision: str | None = None,
    ) -> str:
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": repository.default_branch,
        }
        if expected_revision:
            body["sha"] = expected_revision

        response = self._request("PUT", self._contents_url(repository, path), json=body)
        _check(response, f"Committing {path} to {repository.name}")
        return response.json()["content"]["sha"]

    def delete_file(self, repository: RepositoryRef, path: str, expected_revision: str) -> None:
        response = self._request(
            "DELETE",
            self._contents_url(repository, path),
            json={
                "message": f"chore: remove {path}",
                "sha": expected_revision,
                "branch": repository.default_branch,
            },
        )
        _check(response, f"Deleting {path} from {repository.name}")
