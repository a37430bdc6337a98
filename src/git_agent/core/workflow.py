"""Workflow state machine: project setup, then one task per development cycle."""

import logging
import threading
from contextlib import contextmanager
from typing import Any

from git_agent.core.collaborators import CodeProducer, Notifier, RepositoryHost
from git_agent.core.memory import ProjectState, StateProjection
from git_agent.core.tasks import (
    clean_artifact,
    looks_like_prose,
    normalize_target_path,
    slugify,
    unique_tasks,
)
from git_agent.db.models import (
    CYCLE_ALREADY_COMPLETED,
    CYCLE_COMMITTED,
    CYCLE_COMPLETED,
    CYCLE_NOT_INITIALIZED,
    DEFAULT_TECH_STACK,
    CycleResult,
    Degraded,
    GenerationResult,
    Phase,
    ProjectSpec,
    RepositoryRef,
    SetupRequest,
    SetupResult,
    Success,
    Task,
)
from git_agent.errors import CycleInProgress, GenerationError, InvariantViolation, ValidationError

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 10
PROSE_RETRY_THRESHOLD = 200
MAX_DESCRIPTION_LENGTH = 350


def default_spec(request: SetupRequest) -> ProjectSpec:
    """Spec used when generation fails. Same shape as a generated one."""
    if request.description:
        description = request.description
    elif request.project_name:
        description = f"Fallback project for {request.project_name}"
    else:
        description = "Fallback project"

    return ProjectSpec(
        title=request.project_name or "Random Project",
        type="Web App",
        complexity=request.complexity,
        tech_stack=list(request.tech_constraints) or list(DEFAULT_TECH_STACK),
        features=["Feature 1", "Feature 2"],
        description=description,
        timeline="2 weeks",
        target_audience="Developers",
    )


def repository_description(spec: ProjectSpec) -> str:
    text = (
        f"A {spec.complexity.lower() or 'intermediate'} "
        f"{spec.type.lower() or 'software'} project: {spec.title}."
    )
    if spec.description:
        text += f" {spec.description}"
    if spec.tech_stack:
        text += f" Built with {', '.join(spec.tech_stack)}."
    if len(text) > MAX_DESCRIPTION_LENGTH:
        text = text[: MAX_DESCRIPTION_LENGTH - 3] + "..."
    return text


def default_readme(spec: ProjectSpec, repository: RepositoryRef) -> str:
    lines = [f"# {spec.title}", "", spec.description or f"A {spec.type} project.", ""]
    if spec.features:
        lines += ["## Features", ""] + [f"- {f}" for f in spec.features] + [""]
    if spec.tech_stack:
        lines += ["## Tech Stack", ""] + [f"- {t}" for t in spec.tech_stack] + [""]
    lines += ["## Repository", "", repository.url, ""]
    return "\n".join(lines)


class Orchestrator:
    """Owns project state and drives the setup and development cycles.

    At most one cycle runs at a time. A second request while one is in flight
    is rejected with CycleInProgress instead of queueing behind it.
    """

    def __init__(
        self,
        projection: StateProjection,
        producer: CodeProducer,
        host: RepositoryHost,
        notifier: Notifier | None = None,
        default_extension: str = "js",
    ):
        self.projection = projection
        self.producer = producer
        self.host = host
        self.notifier = notifier
        self.default_extension = default_extension
        self._cycle_lock = threading.Lock()

    @property
    def is_cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    def state(self) -> ProjectState:
        return self.projection.project()

    def status(self) -> dict:
        state = self.state()
        next_task = state.task_queue.peek_front()
        return {
            "phase": state.phase.value,
            "isInitialized": state.phase in (Phase.ACTIVE, Phase.COMPLETED),
            "isCompleted": state.phase == Phase.COMPLETED,
            "remainingTasks": state.remaining_tasks,
            "nextTask": next_task.title if next_task else None,
            "repository": state.repository.name if state.repository else None,
            "cycleRunning": self.is_cycle_running,
        }

    @contextmanager
    def _single_flight(self, operation: str):
        if not self._cycle_lock.acquire(blocking=False):
            raise CycleInProgress(f"Cannot start {operation}: another cycle is in progress")
        try:
            yield
        finally:
            self._cycle_lock.release()

    # ── Setup cycle ──

    def run_setup_cycle(self, request: SetupRequest, replace_existing: bool = False) -> SetupResult:
        """Idea → plan → repository. Leaves the project active.

        A project being replaced stays in place until the new one is fully set
        up; the old one is tombstoned in the same write that saves the new one.
        """
        with self._single_flight("setup cycle"):
            state = self.state()
            previous_phase = state.phase
            if previous_phase != Phase.UNINITIALIZED and not replace_existing:
                raise ValidationError(
                    f"Project is already {previous_phase.value}; reset it before starting a new one"
                )

            state.phase = Phase.INITIALIZING
            try:
                spec_result = self._propose_spec(request)
                spec = spec_result.value
                plan_result = self._propose_plan(spec)
                tasks = unique_tasks(plan_result.value)

                repository = self.host.ensure_repository(slugify(spec.title), repository_description(spec))
                self._commit_readme(spec, repository)
            except Exception as e:
                state.phase = previous_phase
                self.projection.record_failure(None, e)
                self._notify("error", {"error": str(e), "context": "setup cycle"})
                raise

            replace_reason = None
            if previous_phase != Phase.UNINITIALIZED:
                logger.info("Replacing %s project with %r", previous_phase.value, spec.title)
                replace_reason = "replaced by a new project"
            self.projection.save_setup(spec, repository, tasks, replace_reason=replace_reason)

        degraded = [r.reason for r in (spec_result, plan_result) if isinstance(r, Degraded)]
        logger.info(
            "Project %r initialized in repository %s with %d tasks", spec.title, repository.name, len(tasks)
        )
        self._notify(
            "project_started",
            {
                "projectName": spec.title,
                "complexity": spec.complexity,
                "techStack": list(spec.tech_stack),
                "repository": repository.to_dict(),
                "taskCount": len(tasks),
            },
        )
        return SetupResult(spec=spec, repository=repository, task_count=len(tasks), degraded=degraded)

    def _propose_spec(self, request: SetupRequest) -> GenerationResult:
        try:
            return Success(self.producer.propose_spec(request))
        except GenerationError as e:
            logger.warning("Spec generation failed, using the default spec: %s", e)
            return Degraded(default_spec(request), f"spec: {e}")

    def _propose_plan(self, spec: ProjectSpec) -> GenerationResult:
        try:
            return Success(self.producer.propose_plan(spec))
        except GenerationError as e:
            logger.warning("Plan generation failed, continuing with an empty plan: %s", e)
            return Degraded([], f"plan: {e}")

    def _commit_readme(self, spec: ProjectSpec, repository: RepositoryRef):
        try:
            readme = self.producer.generate_readme(spec, repository).strip()
        except GenerationError as e:
            logger.warning("README generation failed, using a template: %s", e)
            readme = default_readme(spec, repository)
        if not readme.startswith("#"):
            readme = f"# {spec.title}\n\n{readme}"

        existing = self.host.read_file(repository, "README.md")
        message = "Update README with project details" if existing else "Initial commit: Add comprehensive README"
        self.host.commit_file(
            repository,
            "README.md",
            readme,
            message,
            expected_revision=existing.revision if existing else None,
        )

    # ── Development cycle ──

    def run_development_cycle(self) -> CycleResult:
        """Generate and commit the task at the head of the queue."""
        with self._single_flight("development cycle"):
            return self._development_cycle(allow_recovery=True)

    def _development_cycle(self, allow_recovery: bool) -> CycleResult:
        state = self.state()
        if state.phase == Phase.UNINITIALIZED:
            logger.info("Project not initialized; run the setup cycle first")
            return CycleResult(status=CYCLE_NOT_INITIALIZED)
        if state.phase == Phase.COMPLETED:
            logger.info("Project already completed; nothing to do")
            return CycleResult(status=CYCLE_ALREADY_COMPLETED)
        if state.spec is None or state.repository is None:
            error = InvariantViolation("Active project is missing its spec or repository reference")
            self.projection.record_failure(None, error)
            raise error

        task = state.task_queue.peek_front()
        if task is None:
            if allow_recovery:
                saved = self.projection.find_saved_queue()
                if saved:
                    logger.info("Task queue is empty; restoring %d saved tasks from the log", len(saved))
                    self.projection.replace_queue(saved)
                    result = self._development_cycle(allow_recovery=False)
                    result.recovered = True
                    return result
            self._complete()
            return CycleResult(status=CYCLE_COMPLETED)

        logger.info("Developing task %r (%d remaining)", task.title, state.remaining_tasks)
        message = f"feat: implement {task.title}"
        try:
            content = self._generate_artifact(state.spec, task)
            path = normalize_target_path(task.target_path, task.title, self.default_extension)
            revision = self._commit(state.repository, path, content, message)
        except Exception as e:
            logger.exception("Development cycle failed for task %r", task.title)
            self.projection.record_failure(task.title, e)
            self._notify(
                "error",
                {"error": str(e), "context": f"task {task.title}", "repository": state.repository.name},
            )
            raise

        self.projection.pop_task(
            task.title,
            details={"filePath": path, "commitMessage": message, "revision": revision},
        )
        remaining = self.state().remaining_tasks
        logger.info("Committed %s for task %r; %d tasks left", path, task.title, remaining)

        self._notify(
            "commit",
            {"message": message, "path": path, "task": task.title, "repository": state.repository.name},
        )
        self._notify(
            "task_completed",
            {"task": task.title, "remainingTasks": remaining, "repository": state.repository.name},
        )
        if remaining == 0 and self.state().phase == Phase.COMPLETED:
            # pop_task wrote the completion marker together with the empty queue
            self._announce_completion()

        return CycleResult(
            status=CYCLE_COMMITTED,
            task_title=task.title,
            path=path,
            revision=revision,
            remaining_tasks=remaining,
        )

    def _generate_artifact(self, spec: ProjectSpec, task: Task) -> str:
        try:
            content = clean_artifact(self.producer.generate_artifact(spec, task))
        except GenerationError as e:
            logger.warning("Generation failed for %r, retrying once: %s", task.title, e)
            content = ""

        prose = looks_like_prose(content) and len(content) < PROSE_RETRY_THRESHOLD
        if len(content) >= MIN_CONTENT_LENGTH and not prose:
            return content

        logger.info("Retrying generation for %r with stricter instructions", task.title)
        content = clean_artifact(self.producer.generate_artifact(spec, task, strict=True))
        if len(content) < MIN_CONTENT_LENGTH:
            raise GenerationError(f"Generated content for {task.title!r} is too short to be a file")
        return content

    def _commit(self, repository: RepositoryRef, path: str, content: str, message: str) -> str:
        existing = self.host.read_file(repository, path)
        return self.host.commit_file(
            repository,
            path,
            content,
            message,
            expected_revision=existing.revision if existing else None,
        )

    def _complete(self):
        if self.projection.mark_completed():
            self._announce_completion()

    def _announce_completion(self):
        logger.info("All tasks done; project marked completed")
        state = self.state()
        self._notify(
            "project_completed",
            {"repository": state.repository.name if state.repository else None},
        )

    # ── Administration ──

    def recover_queue(self) -> bool:
        """Make sure an active project has work queued, restoring the saved plan if needed."""
        with self._single_flight("queue recovery"):
            state = self.state()
            if state.phase != Phase.ACTIVE:
                return False
            if state.task_queue:
                return True
            saved = self.projection.find_saved_queue()
            if not saved:
                return False
            logger.info("Restored %d tasks from the saved plan", len(saved))
            self.projection.replace_queue(saved)
            return True

    def reset_completion(self) -> bool:
        """Reopen a completed project. The only way out of the completed phase short of reset()."""
        with self._single_flight("completion reset"):
            reopened = self.projection.reset_completion()
        if reopened:
            logger.info("Project completion status reset")
        return reopened

    def reset(self):
        """Forget the current project so a new setup can run."""
        with self._single_flight("reset"):
            self.projection.reset()
        logger.info("Project state reset")

    def close(self):
        """Release the host's connections."""
        self.host.close()

    def _notify(self, event_kind: str, payload: dict[str, Any]):
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event_kind, payload)
        except Exception:
            logger.warning("Notifier failed for %s", event_kind, exc_info=True)
