"""Interfaces of the external collaborators the workflow drives."""

from typing import Any, Protocol

from git_agent.db.models import ProjectSpec, RemoteFile, RepositoryRef, SetupRequest, Task


class CodeProducer(Protocol):
    """Turns descriptions into generated content. Raises GenerationError on bad output."""

    def propose_spec(self, request: SetupRequest) -> ProjectSpec: ...

    def propose_plan(self, spec: ProjectSpec) -> list[Task]: ...

    def generate_artifact(self, spec: ProjectSpec, task: Task, strict: bool = False) -> str: ...

    def generate_readme(self, spec: ProjectSpec, repository: RepositoryRef) -> str: ...


class RepositoryHost(Protocol):
    """Persists generated content.

    ``commit_file`` raises ConflictError when ``expected_revision`` is stale and
    NotFoundError when the repository is missing; ``delete_file`` raises
    NotFoundError for a missing path.
    """

    def ensure_repository(self, name: str, description: str) -> RepositoryRef: ...

    def read_file(self, repository: RepositoryRef, path: str) -> RemoteFile | None: ...

    def commit_file(
        self,
        repository: RepositoryRef,
        path: str,
        content: str,
        message: str,
        expected_revision: str | None = None,
    ) -> str: ...

    def delete_file(self, repository: RepositoryRef, path: str, expected_revision: str) -> None: ...

    def close(self) -> None: ...

class Notifier(Protocol):
    """Fire-and-forget notifications. Implementations swallow their own errors."""

    def notify(self, event_kind: str, payload: dict[str, Any]) -> None: ...
