"""Git subprocess wrappers and a repository host backed by local git repositories."""

import logging
import subprocess
from pathlib import Path

from git_agent.db.models import RemoteFile, RepositoryRef
from git_agent.errors import ConflictError, HostError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class GitError(HostError):
    """Raised when a git command fails."""


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e


def blob_revision(repo_path: str | Path, file_path: str | Path) -> str:
    """Git blob hash of a file, the same value GitHub reports as the content sha."""
    return run_git(["hash-object", str(file_path)], cwd=repo_path)


class LocalGitHost:
    """Repositories as plain git directories under a workspace.

    Used when no GitHub token is configured. Revisions are blob hashes, so the
    conditional-write rules match the GitHub contents API.
    """

    def __init__(
        self,
        workspace_dir: str | Path,
        branch: str = "main",
        author_name: str = "git-agent",
        author_email: str = "git-agent@localhost",
    ):
        self.workspace_dir = Path(workspace_dir)
        self.branch = branch
        self.author_name = author_name
        self.author_email = author_email

    def ensure_repository(self, name: str, description: str) -> RepositoryRef:
        path = self.workspace_dir / name
        if not (path / ".git").exists():
            path.mkdir(parents=True, exist_ok=True)
            run_git(["init", "-q", "-b", self.branch], cwd=path)
            (path / ".git" / "description").write_text(description + "\n")
            logger.info("Created local repository %s", path)
        return RepositoryRef(
            name=name,
            url=path.resolve().as_uri(),
            owner="local",
            default_branch=self.branch,
        )

    def read_file(self, repository: RepositoryRef, path: str) -> RemoteFile | None:
        root, target = self._resolve(repository, path)
        if not target.is_file():
            return None
        return RemoteFile(
            path=path,
            content=target.read_text(),
            revision=blob_revision(root, target),
        )

    def commit_file(
        self,
        repository: RepositoryRef,
        path: str,
        content: str,
        message: str,
        expected_revision: str | None = None,
    ) -> str:
        root, target = self._resolve(repository, path)
        current = blob_revision(root, target) if target.is_file() else None
        if current != expected_revision:
            raise ConflictError(
                f"{path} is at revision {current or 'missing'}, expected {expected_revision or 'missing'}"
            )

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        rel = target.relative_to(root).as_posix()
        run_git(["add", "--", rel], cwd=root)
        self._commit(root, message)
        return blob_revision(root, target)

    def delete_file(self, repository: RepositoryRef, path: str, expected_revision: str) -> None:
        root, target = self._resolve(repository, path)
        if not target.is_file():
            raise NotFoundError(f"{path} does not exist in {repository.name}")
        current = blob_revision(root, target)
        if current != expected_revision:
            raise ConflictError(f"{path} is at revision {current}, expected {expected_revision}")

        run_git(["rm", "-q", "--", target.relative_to(root).as_posix()], cwd=root)
        self._commit(root, f"chore: remove {path}")

    def close(self):
        pass

    def _resolve(self, repository: RepositoryRef, path: str) -> tuple[Path, Path]:
        root = (self.workspace_dir / repository.name).resolve()
        if not (root / ".git").exists():
            raise NotFoundError(f"Repository {repository.name} does not exist in {self.workspace_dir}")
        target = (root / path).resolve()
        if root not in target.parents:
            raise ValidationError(f"Path {path!r} is outside the repository")
        return root, target

    def _commit(self, root: Path, message: str):
        run_git(
            [
                "-c", f"user.name={self.author_name}",
                "-c", f"user.email={self.author_email}",
                "commit", "-q", "--allow-empty", "-m", message,
            ],
            cwd=root,
        )
