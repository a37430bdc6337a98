"""Data models for the git agent workflow."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from git_agent.errors import ValidationError

T = TypeVar("T")

PRIORITIES = ("low", "medium", "high")
COMPLEXITIES = ("beginner", "intermediate", "advanced")
DEFAULT_TECH_STACK = ["Node.js"]


class Phase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    COMPLETED = "completed"


# Development cycle outcomes
CYCLE_NOT_INITIALIZED = "not_initialized"
CYCLE_ALREADY_COMPLETED = "already_completed"
CYCLE_COMPLETED = "completed"
CYCLE_COMMITTED = "committed"


def _str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{name} must be a list of strings")
    return list(value)


@dataclass(frozen=True)
class Task:
    title: str
    description: str = ""
    target_path: str = ""
    priority: str = "medium"

    @classmethod
    def from_dict(cls, data: Any) -> "Task":
        """Build a task from plan JSON. Raises ValueError on a malformed entry."""
        if not isinstance(data, dict):
            raise ValueError("task must be an object")
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValueError("task title is required")
        path = data.get("filePath", data.get("targetPath", data.get("target_path"))) or ""
        priority = str(data.get("priority") or "medium").strip().lower()
        if priority not in PRIORITIES:
            priority = "medium"
        return cls(
            title=title.strip(),
            description=str(data.get("description") or ""),
            target_path=str(path),
            priority=priority,
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "filePath": self.target_path,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class ProjectSpec:
    title: str
    type: str = "Web App"
    complexity: str = "beginner"
    tech_stack: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)
    description: str = ""
    timeline: str = ""
    target_audience: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "ProjectSpec":
        """Build a spec from generator JSON. Raises ValueError on a malformed payload."""
        if not isinstance(data, dict):
            raise ValueError("project spec must be an object")
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValueError("project spec title is required")
        return cls(
            title=title.strip(),
            type=str(data.get("type") or "Web App"),
            complexity=str(data.get("complexity") or "beginner"),
            tech_stack=_str_list(data.get("techStack", data.get("tech_stack", [])), "techStack"),
            features=_str_list(data.get("features", []), "features"),
            description=str(data.get("description") or ""),
            timeline=str(data.get("timeline") or ""),
            target_audience=str(data.get("targetAudience") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "type": self.type,
            "complexity": self.complexity,
            "techStack": list(self.tech_stack),
            "features": list(self.features),
            "description": self.description,
            "timeline": self.timeline,
            "targetAudience": self.target_audience,
        }


@dataclass(frozen=True)
class RepositoryRef:
    name: str
    url: str
    owner: str = ""
    default_branch: str = "main"

    @classmethod
    def from_dict(cls, data: Any) -> "RepositoryRef":
        if not isinstance(data, dict):
            raise ValueError("repository must be an object")
        name, url = data.get("name"), data.get("url")
        if not isinstance(name, str) or not name or not isinstance(url, str) or not url:
            raise ValueError("repository name and url are required")
        return cls(
            name=name,
            url=url,
            owner=str(data.get("owner") or ""),
            default_branch=str(data.get("defaultBranch") or "main"),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "url": self.url,
            "owner": self.owner,
            "defaultBranch": self.default_branch,
        }


@dataclass(frozen=True)
class RemoteFile:
    path: str
    content: str
    revision: str


@dataclass
class LogEntry:
    id: int | None = None
    kind: str = ""
    payload: str = ""
    created_at: datetime | None = None


@dataclass(frozen=True)
class SetupRequest:
    complexity: str = "beginner"
    project_name: str | None = None
    description: str | None = None
    tech_constraints: list[str] = field(default_factory=lambda: list(DEFAULT_TECH_STACK))

    @classmethod
    def from_dict(cls, data: Any) -> "SetupRequest":
        """Validate a setup request body. Raises ValidationError."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValidationError("Setup request must be an object")

        complexity = data.get("complexity") or "beginner"
        if not isinstance(complexity, str) or complexity.lower() not in COMPLEXITIES:
            raise ValidationError(
                f"Invalid complexity {complexity!r}; expected one of {', '.join(COMPLEXITIES)}"
            )

        project_name = data.get("projectName", data.get("project_name"))
        description = data.get("description")
        for name, value in (("projectName", project_name), ("description", description)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a string")

        constraints = data.get("techConstraints", data.get("tech_constraints"))
        if constraints is None:
            constraints = list(DEFAULT_TECH_STACK)
        try:
            constraints = _str_list(constraints, "techConstraints")
        except ValueError as e:
            raise ValidationError(str(e)) from e

        return cls(
            complexity=complexity.lower(),
            project_name=(project_name or "").strip() or None,
            description=(description or "").strip() or None,
            tech_constraints=constraints,
        )

    def to_dict(self) -> dict:
        return {
            "complexity": self.complexity,
            "projectName": self.project_name,
            "description": self.description,
            "techConstraints": list(self.tech_constraints),
        }


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Degraded(Generic[T]):
    """A fallback value produced after the generator failed."""

    value: T
    reason: str


GenerationResult = Success | Degraded


@dataclass
class SetupResult:
    spec: ProjectSpec
    repository: RepositoryRef
    task_count: int
    degraded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "status": "initialized",
            "projectSpec": self.spec.to_dict(),
            "repository": self.repository.to_dict(),
            "taskCount": self.task_count,
            "degraded": list(self.degraded),
        }


@dataclass
class CycleResult:
    status: str
    task_title: str | None = None
    path: str | None = None
    revision: str | None = None
    remaining_tasks: int = 0
    recovered: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "currentTask": self.task_title,
            "path": self.path,
            "revision": self.revision,
            "remainingTasks": self.remaining_tasks,
            "recovered": self.recovered,
        }
