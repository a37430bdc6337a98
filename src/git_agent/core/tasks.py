"""Task queue and the helpers that turn generated tasks into committable files."""

import logging
import re
from collections.abc import Iterable, Iterator

from git_agent.db.models import Task

logger = logging.getLogger(__name__)

MAX_REPOSITORY_NAME = 100

# Phrases that mark an explanation instead of a file body
PROSE_PATTERNS = [
    re.compile(r"since the task does not require", re.IGNORECASE),
    re.compile(r"no code will be generated", re.IGNORECASE),
    re.compile(r"this task involves", re.IGNORECASE),
    re.compile(r"the following code", re.IGNORECASE),
    re.compile(r"here is the code", re.IGNORECASE),
    re.compile(r"explanation", re.IGNORECASE),
    re.compile(r"description", re.IGNORECASE),
]

_FENCE_OPEN = re.compile(r"```[a-zA-Z0-9_+-]*[ \t]*\n?")

_DIRECTORY_ENTRYPOINTS = {"frontend", "backend"}


class TaskQueue:
    """Ordered pending tasks, consumed front to back."""

    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: list[Task] = list(tasks)

    def peek_front(self) -> Task | None:
        return self._tasks[0] if self._tasks else None

    def pop_front(self, title: str) -> Task | None:
        """Remove the task matching ``title``.

        Completion is matched by identity rather than position, so a head that
        changed between peek and completion is never dropped by mistake.
        """
        for i, task in enumerate(self._tasks):
            if task.title == title:
                return self._tasks.pop(i)
        return None

    def replace_all(self, tasks: Iterable[Task]):
        self._tasks = list(tasks)

    def to_list(self) -> list[Task]:
        return list(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks))

    def __bool__(self) -> bool:
        return bool(self._tasks)

    def __repr__(self) -> str:
        return f"TaskQueue({[t.title for t in self._tasks]!r})"


def unique_tasks(tasks: Iterable[Task]) -> list[Task]:
    """Drop tasks whose title repeats an earlier one."""
    seen: set[str] = set()
    result = []
    for task in tasks:
        if task.title in seen:
            logger.warning("Dropping duplicate task title from plan: %s", task.title)
            continue
        seen.add(task.title)
        result.append(task)
    return result


def slugify(title: str, max_length: int = MAX_REPOSITORY_NAME) -> str:
    """Convert a project title into a repository name."""
    slug = title.lower().strip()
    slug = re.sub(r"[^a-z0-9\s-]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    slug = slug.strip("-")[:max_length].strip("-")
    return slug or "project"


def normalize_target_path(path: str | None, task_title: str = "", extension: str = "js") -> str:
    """Turn a generated file path into a repository-relative file path."""
    ext = extension.lstrip(".") or "js"
    raw = (path or "").strip().replace("\\", "/")
    is_directory = raw.endswith("/")
    segments = [s for s in raw.split("/") if s not in ("", ".", "..")]

    if not segments:
        if task_title.strip():
            return f"src/{slugify(task_title)}.{ext}"
        return f"src/main.{ext}"

    if segments == ["root"]:
        return f"src/main.{ext}"

    if len(segments) == 1 and segments[0] in _DIRECTORY_ENTRYPOINTS and not is_directory:
        return f"{segments[0]}/src/main.{ext}"

    if is_directory:
        segments.append(f"index.{ext}")
    elif "." not in segments[-1]:
        segments[-1] = f"{segments[-1]}.{ext}"

    return "/".join(segments)


def clean_artifact(text: str | None) -> str:
    """Strip markdown code fences around generated file content."""
    if not text:
        return ""
    cleaned = _FENCE_OPEN.sub("", text)
    return cleaned.replace("```", "").strip()


def looks_like_prose(text: str) -> bool:
    """True when generated content reads like an explanation."""
    return any(pattern.search(text) for pattern in PROSE_PATTERNS)
